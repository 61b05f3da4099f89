"""
Snapshot Deduplication

Dimension tables keep one snapshot per entity per month. These helpers collapse
the history to the latest snapshot of each entity and optionally drop entities
whose latest snapshot is soft-deleted.

Deduplication always runs BEFORE the deleted filter: filtering first would let
an older, non-deleted snapshot survive for an entity that is deleted today.
"""

from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, TypeVar

import structlog

from controlling.models import DimensionSet

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _snapshot_month(record: Any) -> Any:
    return getattr(record, "snapshot_month", None)


def _marker_sort_key(marker: Any) -> tuple:
    # Records without a marker rank as the oldest snapshot
    return (True, marker) if marker is not None else (False,)


def deduplicate_latest(
    records: Iterable[T],
    key_fn: Callable[[T], Hashable] = lambda r: r.id,
    marker_fn: Callable[[T], Any] = _snapshot_month,
) -> List[T]:
    """
    Keep the most recent snapshot of every entity.

    Args:
        records: Snapshot records, in any order
        key_fn: Extracts the entity id
        marker_fn: Extracts the period marker (greater is more recent)

    Returns:
        One record per entity, in order of first appearance of the entity.
        On equal markers the earlier record wins.
    """
    if records is None:
        raise ValueError("records must not be None")

    latest: Dict[Hashable, T] = {}
    for record in records:
        key = key_fn(record)
        current = latest.get(key)
        if current is None or _marker_sort_key(marker_fn(record)) > _marker_sort_key(marker_fn(current)):
            latest[key] = record
    return list(latest.values())


def deduplicate_and_filter_deleted(
    records: Iterable[T],
    key_fn: Callable[[T], Hashable] = lambda r: r.id,
    marker_fn: Callable[[T], Any] = _snapshot_month,
    deleted_fn: Optional[Callable[[T], bool]] = None,
) -> List[T]:
    """Latest snapshot per entity, dropping entities deleted in that snapshot"""
    deleted_fn = deleted_fn or (lambda r: bool(getattr(r, "deleted", False)))
    return [r for r in deduplicate_latest(records, key_fn, marker_fn) if not deleted_fn(r)]


def deduplicate_dimensions(dimensions: DimensionSet) -> DimensionSet:
    """
    Deduplicate every dimension of a snapshot set.

    Companies keep only active entities. Brands, addresses and channels keep
    deleted entities too: a deleted entity may still have fact rows in a
    historical period, and the assembler decides whether it is shown.
    """
    if dimensions is None:
        raise ValueError("dimensions must not be None")

    result = DimensionSet(
        companies=deduplicate_and_filter_deleted(dimensions.companies),
        brands=deduplicate_latest(dimensions.brands, key_fn=lambda b: (b.company_id, b.id)),
        addresses=deduplicate_latest(dimensions.addresses, key_fn=lambda a: (a.company_id, a.id)),
        channels=deduplicate_latest(dimensions.channels),
    )

    logger.debug(
        "Dimensions deduplicated",
        companies=f"{len(dimensions.companies)}->{len(result.companies)}",
        brands=f"{len(dimensions.brands)}->{len(result.brands)}",
        addresses=f"{len(dimensions.addresses)}->{len(result.addresses)}",
        channels=f"{len(dimensions.channels)}->{len(result.channels)}",
    )
    return result
