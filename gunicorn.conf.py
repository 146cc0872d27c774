"""
Gunicorn configuration for the Site Analytics API

Uvicorn workers under Gunicorn. Each worker owns its own engine, Redis pool
and in-flight enqueue set, so graceful_timeout must cover the shutdown drain
of background enqueues.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"{os.getenv('API_HOST', '0.0.0.0')}:{os.getenv('API_PORT', '8000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
timeout = 60
keepalive = 5
graceful_timeout = 30

proc_name = "site-analytics-api"

# Logging; the app reformats its own records through structlog
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = None


def when_ready(server):
    server.log.info("Site Analytics API ready on %s with %s workers", bind, workers)


def worker_int(worker):
    server_pid = worker.ppid
    worker.log.info("Worker %s interrupted (master %s), draining enqueues", worker.pid, server_pid)


def worker_abort(worker):
    # Background enqueues still in flight on this worker are lost
    worker.log.warning("Worker %s aborted before its shutdown drain finished", worker.pid)
