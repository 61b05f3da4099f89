"""
Hierarchy Assembler

Joins prepared dimension identities with rolled-up metrics of two periods into
a flat, parent-linked list of company, brand, address and channel rows.

Row ids:
- company-{companyId}
- brand::{companyId}::{brandId}
- address::{companyId}::{addressId}
- channel::{companyId}::{addressId}::{portalId}

Features:
- Every bucket of an address id counted once, under any brand id
- Explicit, ordered brand resolution for addresses
- Soft-deleted entities emitted only with activity in either period
- Diagnostics attached from the hierarchy validator
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import polars as pl
import structlog

from controlling.config import HierarchySettings, get_settings
from controlling.dimensions.channels import resolve_channel_id
from controlling.hierarchy.validation import create_hierarchy_validator
from controlling.metrics.aggregator import ChannelAggregation, aggregate_fact_frame, aggregate_facts
from controlling.metrics.derived import derive_metrics
from controlling.metrics.rollup import AggregatedMetrics, bucket_key, rollup, split_key
from controlling.models import (
    AddressDim,
    BaseMetrics,
    BrandDim,
    CompanyDim,
    DimensionSet,
    FactRow,
    HierarchyLevel,
    HierarchyResult,
    HierarchyRow,
)

logger = structlog.get_logger(__name__)

FactBatch = Union[Sequence[FactRow], pl.DataFrame]


class BrandResolution(str, Enum):
    """Where an address's owning brand was found, in priority order"""
    FACTS = "facts"
    DIMENSION = "dimension"
    COMPANY = "company"


def company_row_id(company_id: str) -> str:
    return f"company-{company_id}"


def brand_row_id(company_id: str, brand_id: str) -> str:
    return bucket_key("brand", company_id, brand_id)


def address_row_id(company_id: str, address_id: str) -> str:
    return bucket_key("address", company_id, address_id)


def channel_row_id(company_id: str, address_id: str, portal_id: str) -> str:
    return bucket_key("channel", company_id, address_id, portal_id)


def _combine(parts: Iterable[Optional[BaseMetrics]]) -> Optional[BaseMetrics]:
    """Sum the metrics present in `parts`; None when none is present"""
    present = [metrics for metrics in parts if metrics is not None]
    return BaseMetrics.sum(present) if present else None


def _sum_buckets(buckets: Mapping[str, BaseMetrics], keys: Iterable[str]) -> Optional[BaseMetrics]:
    return _combine(buckets.get(key) for key in keys)


def _index_keys(position: int, *levels: Mapping[str, BaseMetrics]) -> Dict[Tuple[str, str], List[str]]:
    """(company, key part at `position`) -> bucket keys, first-seen order"""
    index: Dict[Tuple[str, str], Dict[str, None]] = {}
    for buckets in levels:
        for key in buckets:
            parts = split_key(key)
            index.setdefault((parts[0], parts[position]), {})[key] = None
    return {k: list(keys) for k, keys in index.items()}


def _active(*periods: Optional[BaseMetrics]) -> bool:
    return any(metrics is not None and metrics.has_activity() for metrics in periods)


@dataclass
class _Placement:
    """An address that will be emitted, with the platform ids it owns"""
    address: AddressDim
    brand: Optional[BrandDim]
    ids: Tuple[str, ...]
    current: Optional[BaseMetrics]
    previous: Optional[BaseMetrics]


class HierarchyAssembler:
    """
    Build hierarchy rows for one request.

    Every address-level bucket is attributed to exactly one row: the address
    owning its address id, whatever brand the bucket was recorded under, or
    else the brand of the bucket. Brand rows are therefore the sum of their
    address rows plus buckets of addresses missing from the dimensions.

    The assembler is single-use and holds only the inputs of the call; all
    rows are created fresh by `assemble`.
    """

    def __init__(
        self,
        dimensions: DimensionSet,
        current: AggregatedMetrics,
        previous: Optional[AggregatedMetrics] = None,
        channel_map: Optional[Mapping[str, str]] = None,
    ):
        if dimensions is None:
            raise ValueError("dimensions must not be None")
        if current is None:
            raise ValueError("current metrics must not be None")
        self.dimensions = dimensions
        self.current = current
        self.previous = previous if previous is not None else AggregatedMetrics()
        self.channel_map = channel_map

        self._observed_current = self.current.observed_brand_by_address()
        self._observed_previous = self.previous.observed_brand_by_address()
        self._brand_by_member: Dict[Tuple[str, str], BrandDim] = {}
        for brand in dimensions.brands:
            for member_id in brand.all_ids:
                self._brand_by_member.setdefault((brand.company_id, member_id), brand)

        self._address_keys = _index_keys(2, self.current.by_address, self.previous.by_address)
        self._brand_keys = _index_keys(1, self.current.by_address, self.previous.by_address)
        self._channel_keys = _index_keys(2, self.current.by_channel, self.previous.by_channel)

        self.resolutions: Counter = Counter()

    # =========================================================================
    # BRAND RESOLUTION
    # =========================================================================

    def _observed_brand(self, address: AddressDim) -> Optional[str]:
        for observed in (self._observed_current, self._observed_previous):
            for member_id in address.all_ids:
                brand_id = observed.get(bucket_key(address.company_id, member_id))
                if brand_id is not None:
                    return brand_id
        return None

    def resolve_brand(self, address: AddressDim) -> Tuple[BrandResolution, Optional[BrandDim]]:
        """
        Resolve the brand an address belongs to.

        Returns:
            (resolution, brand dimension or None when the address hangs
            under its company)
        """
        observed = self._observed_brand(address)
        if observed is not None:
            return BrandResolution.FACTS, self._brand_by_member.get((address.company_id, observed))

        if address.brand_id:
            brand = self._brand_by_member.get((address.company_id, address.brand_id))
            if brand is not None:
                return BrandResolution.DIMENSION, brand

        return BrandResolution.COMPANY, None

    # =========================================================================
    # ROW BUILDERS
    # =========================================================================

    def _company_row(self, company: CompanyDim) -> HierarchyRow:
        key = company.id
        return HierarchyRow(
            id=company_row_id(company.id),
            level=HierarchyLevel.COMPANY,
            name=company.name,
            company_id=company.id,
            metrics=derive_metrics(self.current.by_company.get(key), self.previous.by_company.get(key)),
        )

    def _place(self, address: AddressDim, claimed: Set[str]) -> Optional[_Placement]:
        """Resolve the brand and sum every bucket of the ids this address owns"""
        resolution, brand = self.resolve_brand(address)
        self.resolutions[resolution] += 1

        ids = tuple(member_id for member_id in address.all_ids if member_id not in claimed)
        claimed.update(ids)
        keys = [key for member_id in ids for key in self._address_keys.get((address.company_id, member_id), ())]
        current = _sum_buckets(self.current.by_address, keys)
        previous = _sum_buckets(self.previous.by_address, keys)
        if address.deleted and not _active(current, previous):
            return None
        return _Placement(address, brand, ids, current, previous)

    def _brand_row(self, brand: BrandDim, children: Sequence[_Placement], claimed: Set[str]) -> Optional[HierarchyRow]:
        unclaimed = [
            key
            for member_id in brand.all_ids
            for key in self._brand_keys.get((brand.company_id, member_id), ())
            if split_key(key)[2] not in claimed
        ]
        current = _combine([p.current for p in children] + [_sum_buckets(self.current.by_address, unclaimed)])
        previous = _combine([p.previous for p in children] + [_sum_buckets(self.previous.by_address, unclaimed)])
        if brand.deleted and not _active(current, previous):
            return None
        return HierarchyRow(
            id=brand_row_id(brand.company_id, brand.id),
            level=HierarchyLevel.BRAND,
            name=brand.name,
            company_id=brand.company_id,
            parent_id=company_row_id(brand.company_id),
            brand_id=brand.id,
            metrics=derive_metrics(current, previous),
        )

    def _address_rows(self, placement: _Placement, emitted_brands: Mapping[str, HierarchyRow]) -> List[HierarchyRow]:
        address = placement.address
        company_id = address.company_id
        brand = placement.brand
        brand_row = emitted_brands.get(brand.id) if brand is not None else None
        row_id = address_row_id(company_id, address.id)
        rows = [
            HierarchyRow(
                id=row_id,
                level=HierarchyLevel.ADDRESS,
                name=address.name,
                company_id=company_id,
                parent_id=brand_row.id if brand_row is not None else company_row_id(company_id),
                brand_id=brand_row.brand_id if brand_row is not None else None,
                metrics=derive_metrics(placement.current, placement.previous),
            )
        ]

        keys_by_portal: Dict[str, List[str]] = {}
        for member_id in placement.ids:
            for key in self._channel_keys.get((company_id, member_id), ()):
                keys_by_portal.setdefault(split_key(key)[3], []).append(key)

        for channel in self.dimensions.channels:
            channel_keys = keys_by_portal.get(channel.id)
            if not channel_keys:
                continue
            rows.append(
                HierarchyRow(
                    id=channel_row_id(company_id, address.id, channel.id),
                    level=HierarchyLevel.CHANNEL,
                    name=channel.name,
                    company_id=company_id,
                    parent_id=row_id,
                    brand_id=rows[0].brand_id,
                    channel_id=resolve_channel_id(channel.id, self.channel_map),
                    metrics=derive_metrics(
                        _sum_buckets(self.current.by_channel, channel_keys),
                        _sum_buckets(self.previous.by_channel, channel_keys),
                    ),
                )
            )
        return rows

    # =========================================================================
    # ASSEMBLY
    # =========================================================================

    def _company_rows(
        self,
        company: CompanyDim,
        brands: Sequence[BrandDim],
        addresses: Sequence[AddressDim],
    ) -> List[HierarchyRow]:
        claimed: Set[str] = set()
        placements = [p for p in (self._place(address, claimed) for address in addresses) if p is not None]

        children: Dict[str, List[_Placement]] = {}
        for placement in placements:
            if placement.brand is not None:
                children.setdefault(placement.brand.id, []).append(placement)

        rows = [self._company_row(company)]
        emitted_brands: Dict[str, HierarchyRow] = {}
        for brand in brands:
            row = self._brand_row(brand, children.get(brand.id, []), claimed)
            if row is not None:
                emitted_brands[brand.id] = row
                rows.append(row)

        for placement in placements:
            rows.extend(self._address_rows(placement, emitted_brands))
        return rows

    def assemble(self) -> List[HierarchyRow]:
        """Emit company, brand, address and channel rows, grouped per company"""
        brands_by_company: Dict[str, List[BrandDim]] = {}
        for brand in self.dimensions.brands:
            brands_by_company.setdefault(brand.company_id, []).append(brand)
        addresses_by_company: Dict[str, List[AddressDim]] = {}
        for address in self.dimensions.addresses:
            addresses_by_company.setdefault(address.company_id, []).append(address)

        rows: List[HierarchyRow] = []
        for company in self.dimensions.companies:
            rows.extend(self._company_rows(
                company,
                brands_by_company.get(company.id, []),
                addresses_by_company.get(company.id, []),
            ))

        logger.debug(
            "Hierarchy assembled",
            rows=len(rows),
            resolutions={k.value: v for k, v in self.resolutions.items()},
        )
        return rows


# =============================================================================
# ENTRY POINTS
# =============================================================================

def _aggregate(facts: FactBatch, settings: HierarchySettings) -> ChannelAggregation:
    window = (settings.delivery_time_min_minutes, settings.delivery_time_max_minutes)
    if isinstance(facts, pl.DataFrame):
        return aggregate_fact_frame(facts, channel_map=settings.portal_channel_map, delivery_window=window)
    if facts is None or isinstance(facts, (str, bytes)) or not isinstance(facts, Sequence):
        raise ValueError("fact batch must be a sequence of FactRow or a polars DataFrame")
    return aggregate_facts(facts, channel_map=settings.portal_channel_map, delivery_window=window)


def build_hierarchy_from_buckets(
    dimensions: DimensionSet,
    current_buckets: Mapping[str, BaseMetrics],
    previous_buckets: Optional[Mapping[str, BaseMetrics]] = None,
    *,
    settings: Optional[HierarchySettings] = None,
    validate: Optional[bool] = None,
) -> HierarchyResult:
    """
    Assemble the hierarchy from channel-level buckets of both periods.

    Args:
        dimensions: Prepared (deduplicated and grouped) dimensions
        current_buckets: `company::brand::address::channel` -> BaseMetrics
        previous_buckets: Same for the comparison period
        settings: Hierarchy settings; defaults to the application settings
        validate: Run the validator; defaults to `settings.validate_output`

    Returns:
        HierarchyResult with rows and, when validated, diagnostics
    """
    if dimensions is None:
        raise ValueError("dimensions must not be None")
    settings = settings or get_settings().hierarchy
    if validate is None:
        validate = settings.validate_output

    current = rollup(current_buckets)
    previous = rollup(previous_buckets if previous_buckets is not None else {})
    rows = HierarchyAssembler(
        dimensions, current, previous, channel_map=settings.portal_channel_map
    ).assemble()

    validation = None
    if validate:
        validation = create_hierarchy_validator(
            tolerance=settings.rollup_tolerance,
            strict_mode=settings.strict_validation,
        ).validate(rows)

    return HierarchyResult(rows=rows, validation=validation)


def build_hierarchy(
    dimensions: DimensionSet,
    current_facts: FactBatch,
    previous_facts: FactBatch = (),
    *,
    settings: Optional[HierarchySettings] = None,
    validate: Optional[bool] = None,
) -> HierarchyResult:
    """
    Assemble the hierarchy from raw or pre-aggregated fact rows.

    Both periods are aggregated independently and then share the rollup and
    derived-metric steps with `build_hierarchy_from_buckets`.

    Example:
        result = build_hierarchy(dims, current_rows, previous_rows)
        company = result.get("company-1")
    """
    if dimensions is None:
        raise ValueError("dimensions must not be None")
    settings = settings or get_settings().hierarchy

    current = _aggregate(current_facts, settings)
    previous = _aggregate(previous_facts, settings)
    logger.debug(
        "Facts aggregated",
        current_rows=current.rows_seen,
        current_skipped=current.rows_skipped,
        previous_rows=previous.rows_seen,
        previous_skipped=previous.rows_skipped,
    )
    return build_hierarchy_from_buckets(
        dimensions,
        current.buckets,
        previous.buckets,
        settings=settings,
        validate=validate,
    )
