"""
Metric Base Aggregator

Sums fact rows for one period into channel-level BaseMetrics buckets keyed by
`company::brand::address::channel`.

Handles:
- Raw order rows (one order each, new-customer flag) and pre-aggregated rows
- Ratings as weighted sums, never as averages of averages
- Delivery times as weighted sums over valid samples
- Rows missing a key component, which are skipped and counted
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Tuple

import polars as pl
import structlog

from controlling.dimensions.channels import resolve_channel_id
from controlling.metrics.rollup import bucket_key
from controlling.models import BaseMetrics, FactRow

logger = structlog.get_logger(__name__)

# Minutes; matches the window the upstream metrics query applies
DEFAULT_DELIVERY_WINDOW: Tuple[float, float] = (1, 179)

KEY_COLUMNS = ["company_id", "brand_id", "address_id", "channel_id"]

# Frame columns and the value used when a column or a cell is missing
_FRAME_DEFAULTS = {
    "revenue": 0.0,
    "order_count": 1,
    "new_customer_flag": False,
    "new_customers": 0,
    "discount_amount": 0.0,
    "refund_amount": 0.0,
    "ad_spend": 0.0,
    "ad_revenue": 0.0,
    "impressions": 0,
    "clicks": 0,
    "ad_orders": 0,
    "rating": 0.0,
    "review_count": 0,
}
_NULLABLE_COLUMNS = {
    "promoted_orders": pl.Int64,
    "delivery_time_minutes": pl.Float64,
    "delivery_time_count": pl.Int64,
}


@dataclass
class ChannelAggregation:
    """Channel-level buckets for one period"""
    buckets: Dict[str, BaseMetrics] = field(default_factory=dict)
    rows_seen: int = 0
    rows_skipped: int = 0


def _has_key(parts: Iterable[Optional[str]]) -> bool:
    return all(part is not None and str(part).strip() != "" for part in parts)


def _delivery_sample(row: FactRow, window: Tuple[float, float]) -> Tuple[float, int]:
    """Weighted delivery-time sum and sample count contributed by a row"""
    minutes = row.delivery_time_minutes
    if row.delivery_time_count is not None:
        return (minutes or 0.0) * row.delivery_time_count, row.delivery_time_count
    if minutes is not None and window[0] <= minutes <= window[1]:
        return minutes, 1
    return 0.0, 0


def accumulate(
    bucket: BaseMetrics,
    row: FactRow,
    channel: Optional[str] = None,
    delivery_window: Tuple[float, float] = DEFAULT_DELIVERY_WINDOW,
) -> None:
    """Add one fact row to a bucket in place"""
    bucket.revenue += row.revenue or 0.0
    bucket.orders += row.order_count or 0
    bucket.new_customers += (row.new_customers or 0) + (1 if row.new_customer_flag else 0)
    bucket.discounts += row.discount_amount or 0.0
    bucket.refunds += row.refund_amount or 0.0
    if row.promoted_orders is not None:
        bucket.promoted_orders += row.promoted_orders
    elif (row.discount_amount or 0) > 0:
        bucket.promoted_orders += row.order_count or 0

    bucket.ad_spend += row.ad_spend or 0.0
    bucket.ad_revenue += row.ad_revenue or 0.0
    bucket.impressions += row.impressions or 0
    bucket.clicks += row.clicks or 0
    bucket.ad_orders += row.ad_orders or 0

    reviews = row.review_count or 0
    weighted = (row.rating or 0.0) * reviews
    bucket.rating_weighted_sum += weighted
    bucket.review_count += reviews
    if channel and reviews:
        bucket.channel_rating_sums[channel] = bucket.channel_rating_sums.get(channel, 0.0) + weighted
        bucket.channel_review_counts[channel] = bucket.channel_review_counts.get(channel, 0) + reviews

    delivery_sum, delivery_count = _delivery_sample(row, delivery_window)
    bucket.delivery_time_weighted_sum += delivery_sum
    bucket.delivery_time_count += delivery_count


def aggregate_facts(
    rows: Iterable[FactRow],
    channel_map: Optional[Mapping[str, str]] = None,
    delivery_window: Tuple[float, float] = DEFAULT_DELIVERY_WINDOW,
) -> ChannelAggregation:
    """
    Aggregate fact rows into channel-level buckets.

    Args:
        rows: Fact rows for a single period
        channel_map: Portal id -> channel id, used for per-channel ratings
        delivery_window: Valid delivery time range for raw order rows

    Returns:
        ChannelAggregation with buckets and row counters
    """
    if rows is None:
        raise ValueError("rows must not be None")

    result = ChannelAggregation()
    for row in rows:
        result.rows_seen += 1
        if not _has_key(row.key_parts):
            result.rows_skipped += 1
            continue

        key = bucket_key(*(str(part).strip() for part in row.key_parts))
        bucket = result.buckets.get(key)
        if bucket is None:
            bucket = result.buckets[key] = BaseMetrics()
        channel = resolve_channel_id(str(row.channel_id).strip(), channel_map)
        accumulate(bucket, row, channel=channel, delivery_window=delivery_window)

    if result.rows_skipped:
        logger.warning(
            "Skipped fact rows missing a key component",
            skipped=result.rows_skipped,
            total=result.rows_seen,
        )
    logger.debug("Fact rows aggregated", rows=result.rows_seen, buckets=len(result.buckets))
    return result


def aggregate_fact_frame(
    df: pl.DataFrame,
    channel_map: Optional[Mapping[str, str]] = None,
    delivery_window: Tuple[float, float] = DEFAULT_DELIVERY_WINDOW,
) -> ChannelAggregation:
    """
    Aggregate a polars DataFrame of fact rows.

    Column names are the FactRow field names. Missing measure columns take the
    FactRow defaults. The result is identical to `aggregate_facts` over the
    same rows.
    """
    if df is None:
        raise ValueError("df must not be None")
    missing_keys = [c for c in KEY_COLUMNS if c not in df.columns]
    if missing_keys:
        raise ValueError(f"Fact frame is missing key columns: {missing_keys}")

    rows_seen = df.height

    # Fill absent columns and null cells
    df = df.with_columns(
        [pl.lit(default).alias(col) for col, default in _FRAME_DEFAULTS.items() if col not in df.columns]
        + [pl.lit(None, dtype=dtype).alias(col) for col, dtype in _NULLABLE_COLUMNS.items() if col not in df.columns]
    )
    df = df.with_columns(
        [pl.col(col).fill_null(default) for col, default in _FRAME_DEFAULTS.items()]
        + [pl.col(col).cast(dtype) for col, dtype in _NULLABLE_COLUMNS.items()]
        + [pl.col(col).cast(pl.Utf8).str.strip_chars() for col in KEY_COLUMNS]
    )

    has_key = pl.all_horizontal([pl.col(c).is_not_null() & (pl.col(c) != "") for c in KEY_COLUMNS])
    valid = df.filter(has_key)
    rows_skipped = rows_seen - valid.height

    lo, hi = delivery_window
    minutes = pl.col("delivery_time_minutes")
    explicit_count = pl.col("delivery_time_count").is_not_null()
    in_window = minutes.is_not_null() & minutes.is_between(lo, hi)

    valid = valid.with_columns(
        (pl.col("new_customers") + pl.col("new_customer_flag").cast(pl.Int64)).alias("_new_customers"),
        pl.when(pl.col("promoted_orders").is_not_null())
        .then(pl.col("promoted_orders"))
        .when(pl.col("discount_amount") > 0)
        .then(pl.col("order_count"))
        .otherwise(0)
        .alias("_promoted_orders"),
        (pl.col("rating") * pl.col("review_count")).alias("_rating_weighted"),
        pl.when(explicit_count)
        .then(minutes.fill_null(0.0) * pl.col("delivery_time_count"))
        .when(in_window)
        .then(minutes)
        .otherwise(0.0)
        .alias("_delivery_sum"),
        pl.when(explicit_count)
        .then(pl.col("delivery_time_count"))
        .when(in_window)
        .then(1)
        .otherwise(0)
        .alias("_delivery_count"),
    )

    grouped = valid.group_by(KEY_COLUMNS, maintain_order=True).agg(
        pl.col("revenue").sum(),
        pl.col("order_count").sum(),
        pl.col("_new_customers").sum(),
        pl.col("discount_amount").sum(),
        pl.col("refund_amount").sum(),
        pl.col("_promoted_orders").sum(),
        pl.col("ad_spend").sum(),
        pl.col("ad_revenue").sum(),
        pl.col("impressions").sum(),
        pl.col("clicks").sum(),
        pl.col("ad_orders").sum(),
        pl.col("_rating_weighted").sum(),
        pl.col("review_count").sum(),
        pl.col("_delivery_sum").sum(),
        pl.col("_delivery_count").sum(),
    )

    result = ChannelAggregation(rows_seen=rows_seen, rows_skipped=rows_skipped)
    for rec in grouped.iter_rows(named=True):
        key = bucket_key(*(rec[c] for c in KEY_COLUMNS))
        bucket = BaseMetrics(
            revenue=float(rec["revenue"]),
            orders=int(rec["order_count"]),
            new_customers=int(rec["_new_customers"]),
            discounts=float(rec["discount_amount"]),
            refunds=float(rec["refund_amount"]),
            promoted_orders=int(rec["_promoted_orders"]),
            ad_spend=float(rec["ad_spend"]),
            ad_revenue=float(rec["ad_revenue"]),
            impressions=int(rec["impressions"]),
            clicks=int(rec["clicks"]),
            ad_orders=int(rec["ad_orders"]),
            rating_weighted_sum=float(rec["_rating_weighted"]),
            review_count=int(rec["review_count"]),
            delivery_time_weighted_sum=float(rec["_delivery_sum"]),
            delivery_time_count=int(rec["_delivery_count"]),
        )
        channel = resolve_channel_id(rec["channel_id"], channel_map)
        if channel and bucket.review_count:
            bucket.channel_rating_sums[channel] = bucket.rating_weighted_sum
            bucket.channel_review_counts[channel] = bucket.review_count
        result.buckets[key] = bucket

    if rows_skipped:
        logger.warning("Skipped fact rows missing a key component", skipped=rows_skipped, total=rows_seen)
    logger.debug("Fact frame aggregated", rows=rows_seen, buckets=len(result.buckets))
    return result
