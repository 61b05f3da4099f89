"""
Derived Metrics Calculator

Turns summed BaseMetrics into ratios and period-over-period changes. Every
division is guarded: a zero or missing denominator yields 0, never inf or NaN.
"""

from typing import Optional

from controlling.models import BaseMetrics, DerivedMetrics


def safe_divide(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is not positive"""
    if not denominator or denominator <= 0:
        return 0.0
    return numerator / denominator


def safe_pct(numerator: float, denominator: float) -> float:
    """Share of numerator in denominator as a percentage"""
    return safe_divide(numerator, denominator) * 100


def pct_change(current: float, previous: Optional[float]) -> float:
    """
    Percentage change from previous to current.

    A zero or missing previous value always yields 0.
    """
    if previous is None or previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def derive_metrics(current: Optional[BaseMetrics], previous: Optional[BaseMetrics] = None) -> DerivedMetrics:
    """
    Compute the final metrics of one hierarchy node.

    Args:
        current: BaseMetrics of the queried period, None if the node had no data
        previous: BaseMetrics of the comparison period, if any

    Returns:
        DerivedMetrics; all zero when `current` is None
    """
    if current is None:
        return DerivedMetrics()

    avg_ticket = safe_divide(current.revenue, current.orders)
    prev_revenue = previous.revenue if previous is not None else None
    prev_orders = previous.orders if previous is not None else None
    prev_ad_spend = previous.ad_spend if previous is not None else None
    prev_avg_ticket = safe_divide(previous.revenue, previous.orders) if previous is not None else None

    return DerivedMetrics(
        revenue=current.revenue,
        revenue_change_pct=pct_change(current.revenue, prev_revenue),
        orders=current.orders,
        orders_change_pct=pct_change(current.orders, prev_orders),
        avg_ticket=avg_ticket,
        avg_ticket_change_pct=pct_change(avg_ticket, prev_avg_ticket),
        new_customers=current.new_customers,
        new_customer_pct=safe_pct(current.new_customers, current.orders),
        discounts=current.discounts,
        refunds=current.refunds,
        net_revenue=current.revenue - current.refunds,
        promotion_rate=safe_pct(current.discounts, current.revenue),
        refund_rate=safe_pct(current.refunds, current.revenue),
        promoted_orders=current.promoted_orders,
        promoted_order_pct=safe_pct(current.promoted_orders, current.orders),
        ad_spend=current.ad_spend,
        ad_spend_change_pct=pct_change(current.ad_spend, prev_ad_spend),
        ad_revenue=current.ad_revenue,
        roas=safe_divide(current.ad_revenue, current.ad_spend),
        impressions=current.impressions,
        clicks=current.clicks,
        ctr=safe_pct(current.clicks, current.impressions),
        ad_orders=current.ad_orders,
        ad_conversion_rate=safe_pct(current.ad_orders, current.clicks),
        avg_rating=safe_divide(current.rating_weighted_sum, current.review_count),
        review_count=current.review_count,
        rating_by_channel={
            channel: safe_divide(total, current.channel_review_counts.get(channel, 0))
            for channel, total in current.channel_rating_sums.items()
        },
        reviews_by_channel=dict(current.channel_review_counts),
        avg_delivery_time=safe_divide(current.delivery_time_weighted_sum, current.delivery_time_count),
    )
