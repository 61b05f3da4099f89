"""
Bottom-Up Rollup

Folds channel-level buckets into address, brand and company totals. Keys are
composite paths: `company::brand::address::channel` at the leaf level, and the
matching prefixes above it.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping

import structlog

from controlling.models import BaseMetrics

logger = structlog.get_logger(__name__)

KEY_SEPARATOR = "::"


def bucket_key(*parts: object) -> str:
    """Join key components into a composite bucket key"""
    return KEY_SEPARATOR.join(str(part) for part in parts)


def split_key(key: str) -> List[str]:
    """Split a composite bucket key into its components"""
    return key.split(KEY_SEPARATOR)


@dataclass
class AggregatedMetrics:
    """BaseMetrics for one period at all four hierarchy levels"""
    by_channel: Dict[str, BaseMetrics] = field(default_factory=dict)
    by_address: Dict[str, BaseMetrics] = field(default_factory=dict)
    by_brand: Dict[str, BaseMetrics] = field(default_factory=dict)
    by_company: Dict[str, BaseMetrics] = field(default_factory=dict)

    def observed_brand_by_address(self) -> Dict[str, str]:
        """First brand seen for each `company::address`, in bucket order"""
        mapping: Dict[str, str] = {}
        for key in self.by_channel:
            company_id, brand_id, address_id, _ = split_key(key)
            mapping.setdefault(bucket_key(company_id, address_id), brand_id)
        return mapping


def _fold(source: Mapping[str, BaseMetrics], parent_key: Callable[[str], str]) -> Dict[str, BaseMetrics]:
    folded: Dict[str, BaseMetrics] = {}
    for key, metrics in source.items():
        target = parent_key(key)
        if target not in folded:
            folded[target] = BaseMetrics()
        folded[target].add(metrics)
    return folded


def rollup(channel_buckets: Mapping[str, BaseMetrics]) -> AggregatedMetrics:
    """
    Aggregate channel buckets bottom-up.

    Each level is summed from the level directly below it only, so every
    bucket is counted exactly once per level. The input mapping is not
    modified.

    Args:
        channel_buckets: `company::brand::address::channel` -> BaseMetrics

    Returns:
        AggregatedMetrics with all four levels
    """
    if channel_buckets is None:
        raise ValueError("channel_buckets must not be None")

    by_channel: Dict[str, BaseMetrics] = {}
    malformed = 0
    for key, metrics in channel_buckets.items():
        parts = split_key(key)
        if len(parts) != 4 or not all(parts):
            malformed += 1
            continue
        by_channel[key] = metrics.copy()
    if malformed:
        logger.warning("Skipped malformed bucket keys", skipped=malformed, total=len(channel_buckets))

    by_address = _fold(by_channel, lambda key: bucket_key(*split_key(key)[:3]))
    by_brand = _fold(by_address, lambda key: bucket_key(*split_key(key)[:2]))
    by_company = _fold(by_brand, lambda key: split_key(key)[0])

    return AggregatedMetrics(
        by_channel=by_channel,
        by_address=by_address,
        by_brand=by_brand,
        by_company=by_company,
    )
