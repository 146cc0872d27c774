"""
Site Analytics - event ingestion with deferred aggregation into daily rollups
"""

__version__ = "1.0.0"
