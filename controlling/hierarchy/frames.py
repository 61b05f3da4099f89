"""
Flatten hierarchy rows into a polars DataFrame.
"""

from typing import Iterable

import polars as pl

from controlling.models import DerivedMetrics, HierarchyRow

_IDENTITY_SCHEMA = {
    "id": pl.Utf8,
    "level": pl.Utf8,
    "name": pl.Utf8,
    "parent_id": pl.Utf8,
    "company_id": pl.Utf8,
    "brand_id": pl.Utf8,
    "channel_id": pl.Utf8,
}
_INT_METRICS = {"orders", "new_customers", "promoted_orders", "impressions", "clicks", "ad_orders", "review_count"}


def frame_schema() -> dict:
    schema = dict(_IDENTITY_SCHEMA)
    for name in DerivedMetrics.scalar_fields():
        schema[name] = pl.Int64 if name in _INT_METRICS else pl.Float64
    return schema


def rows_to_frame(rows: Iterable[HierarchyRow]) -> pl.DataFrame:
    """One frame row per hierarchy row, scalar metrics as columns"""
    metric_names = DerivedMetrics.scalar_fields()
    records = []
    for row in rows:
        record = {
            "id": row.id,
            "level": row.level.value,
            "name": row.name,
            "parent_id": row.parent_id,
            "company_id": row.company_id,
            "brand_id": row.brand_id,
            "channel_id": row.channel_id,
        }
        for name in metric_names:
            value = getattr(row.metrics, name)
            record[name] = int(value) if name in _INT_METRICS else float(value)
        records.append(record)
    return pl.DataFrame(records, schema=frame_schema())
