#!/usr/bin/env python
"""
Server Entry Point

Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py
    Gunicorn:     python run_server.py --gunicorn
                  (same as: gunicorn site_analytics.main:app -c gunicorn.conf.py)
"""

import argparse
import os
import subprocess

from site_analytics.config import get_settings

APP = "site_analytics.main:app"


def run_dev_server(host: str, port: int):
    """Single process with auto-reload."""
    import uvicorn

    uvicorn.run(
        APP,
        host=host,
        port=port,
        reload=True,
        reload_dirs=["site_analytics"],
        log_level="debug",
    )


def run_prod_server(host: str, port: int):
    """Uvicorn with several worker processes."""
    import uvicorn

    uvicorn.run(
        APP,
        host=host,
        port=port,
        workers=int(os.getenv("WORKERS", 4)),
        log_level=get_settings().monitoring.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn(host: str, port: int):
    """Gunicorn managing Uvicorn workers (recommended for production)."""
    env = dict(os.environ, BIND=f"{host}:{port}")
    subprocess.run(["gunicorn", APP, "-c", "gunicorn.conf.py"], env=env, check=False)


if __name__ == "__main__":
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Site Analytics API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--gunicorn", action="store_true", help="Run under Gunicorn")
    parser.add_argument("--host", default=settings.api_host, help="Bind host (default: API_HOST)")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Bind port (default: API_PORT)")
    args = parser.parse_args()

    if args.dev:
        print("Starting development server...")
        run_dev_server(args.host, args.port)
    elif args.gunicorn:
        print("Starting production server with Gunicorn...")
        run_gunicorn(args.host, args.port)
    else:
        print("Starting production server with Uvicorn...")
        run_prod_server(args.host, args.port)
