"""
Site Analytics Rollup Service
Configuration Module
"""
from .settings import Settings, RollupMode, get_settings

__all__ = ["Settings", "RollupMode", "get_settings"]
