"""
Aggregation Module
"""
from .aggregator import AggregationResult, BatchAggregator, create_aggregator
from .rollup import DayAccumulator, build_rollup_row, fold_entries, rank_paths, utc_day

__all__ = [
    "AggregationResult",
    "BatchAggregator",
    "create_aggregator",
    "DayAccumulator",
    "build_rollup_row",
    "fold_entries",
    "rank_paths",
    "utc_day",
]
