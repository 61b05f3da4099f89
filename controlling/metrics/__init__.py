"""
Metric Aggregation Module
"""
from .aggregator import ChannelAggregation, aggregate_fact_frame, aggregate_facts
from .derived import derive_metrics, pct_change, safe_divide
from .rollup import AggregatedMetrics, bucket_key, rollup, split_key

__all__ = [
    "ChannelAggregation",
    "aggregate_facts",
    "aggregate_fact_frame",
    "derive_metrics",
    "pct_change",
    "safe_divide",
    "AggregatedMetrics",
    "bucket_key",
    "split_key",
    "rollup",
]
