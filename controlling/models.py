"""
Hierarchy Domain Models

Typed records shared by the dimension, metric and hierarchy modules:
- Dimension snapshots (company, brand, address, channel)
- Fact rows for one period
- Additive BaseMetrics accumulators and read-only DerivedMetrics
- Assembled HierarchyRow values and the HierarchyResult wrapper
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

if TYPE_CHECKING:
    from controlling.hierarchy.validation import ValidationCheck, ValidationResult


class HierarchyLevel(str, Enum):
    """Levels of the controlling hierarchy"""
    COMPANY = "company"
    BRAND = "brand"
    ADDRESS = "address"
    CHANNEL = "channel"


class ChannelId(str, Enum):
    """Delivery platforms known to the dashboard"""
    GLOVO = "glovo"
    UBEREATS = "ubereats"
    JUSTEAT = "justeat"


# =============================================================================
# DIMENSIONS
# =============================================================================

@dataclass(frozen=True)
class CompanyDim:
    """Top of the hierarchy"""
    id: str
    name: str
    snapshot_month: Optional[date] = None
    deleted: bool = False


@dataclass(frozen=True)
class BrandDim:
    """A brand (store) operated by a company"""
    id: str
    name: str
    company_id: str
    deleted: bool = False
    snapshot_month: Optional[date] = None
    all_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "all_ids", _with_own_id(self.id, self.all_ids))


@dataclass(frozen=True)
class AddressDim:
    """
    A physical location serving orders.

    `all_ids` holds every platform-specific identifier resolving to this
    logical address and always contains `id`.
    """
    id: str
    name: str
    company_id: str
    all_ids: Tuple[str, ...] = ()
    brand_id: Optional[str] = None
    deleted: bool = False
    snapshot_month: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, "all_ids", _with_own_id(self.id, self.all_ids))


@dataclass(frozen=True)
class ChannelDim:
    """A delivery platform ("portal" upstream)"""
    id: str
    name: str
    snapshot_month: Optional[date] = None
    deleted: bool = False


@dataclass(frozen=True)
class DimensionSet:
    """All dimension records for one company scope"""
    companies: Tuple[CompanyDim, ...] = ()
    brands: Tuple[BrandDim, ...] = ()
    addresses: Tuple[AddressDim, ...] = ()
    channels: Tuple[ChannelDim, ...] = ()

    def __post_init__(self):
        for name in ("companies", "brands", "addresses", "channels"):
            value = getattr(self, name)
            if value is None:
                raise ValueError(f"DimensionSet.{name} must not be None")
            object.__setattr__(self, name, tuple(value))


def _with_own_id(own_id: str, ids: Sequence[str]) -> Tuple[str, ...]:
    """Normalize an id list so that it contains the entity's own id exactly once"""
    result: List[str] = []
    for value in ids:
        value = str(value)
        if value not in result:
            result.append(value)
    if own_id not in result:
        result.insert(0, own_id)
    return tuple(result)


# =============================================================================
# FACTS
# =============================================================================

@dataclass(frozen=True)
class FactRow:
    """
    One period-scoped observation for a company/brand/address/channel path.

    A raw order row keeps the defaults `order_count=1` and sets
    `new_customer_flag`; a pre-aggregated row carries `order_count=n` and
    `new_customers=k`. Both forms sum identically.
    """
    company_id: Optional[str]
    brand_id: Optional[str]
    address_id: Optional[str]
    channel_id: Optional[str]
    revenue: float = 0.0
    order_count: int = 1
    new_customer_flag: bool = False
    new_customers: int = 0
    discount_amount: float = 0.0
    refund_amount: float = 0.0
    promoted_orders: Optional[int] = None
    ad_spend: float = 0.0
    ad_revenue: float = 0.0
    impressions: int = 0
    clicks: int = 0
    ad_orders: int = 0
    rating: float = 0.0
    review_count: int = 0
    delivery_time_minutes: Optional[float] = None
    delivery_time_count: Optional[int] = None

    @property
    def key_parts(self) -> Tuple[Optional[str], ...]:
        return (self.company_id, self.brand_id, self.address_id, self.channel_id)


# =============================================================================
# METRICS
# =============================================================================

_ADDITIVE_FIELDS = (
    "revenue",
    "orders",
    "new_customers",
    "discounts",
    "refunds",
    "promoted_orders",
    "ad_spend",
    "ad_revenue",
    "impressions",
    "clicks",
    "ad_orders",
    "rating_weighted_sum",
    "review_count",
    "delivery_time_weighted_sum",
    "delivery_time_count",
)


@dataclass
class BaseMetrics:
    """Additive accumulator, one per hierarchy node per period"""
    revenue: float = 0.0
    orders: int = 0
    new_customers: int = 0
    discounts: float = 0.0
    refunds: float = 0.0
    promoted_orders: int = 0
    ad_spend: float = 0.0
    ad_revenue: float = 0.0
    impressions: int = 0
    clicks: int = 0
    ad_orders: int = 0
    rating_weighted_sum: float = 0.0
    review_count: int = 0
    delivery_time_weighted_sum: float = 0.0
    delivery_time_count: int = 0
    channel_rating_sums: Dict[str, float] = field(default_factory=dict)
    channel_review_counts: Dict[str, int] = field(default_factory=dict)

    ADDITIVE_FIELDS = _ADDITIVE_FIELDS

    def add(self, other: "BaseMetrics") -> "BaseMetrics":
        """Accumulate another bucket into this one in place"""
        for name in _ADDITIVE_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        for channel, value in other.channel_rating_sums.items():
            self.channel_rating_sums[channel] = self.channel_rating_sums.get(channel, 0.0) + value
        for channel, value in other.channel_review_counts.items():
            self.channel_review_counts[channel] = self.channel_review_counts.get(channel, 0) + value
        return self

    def __add__(self, other: "BaseMetrics") -> "BaseMetrics":
        return self.copy().add(other)

    def copy(self) -> "BaseMetrics":
        return replace(
            self,
            channel_rating_sums=dict(self.channel_rating_sums),
            channel_review_counts=dict(self.channel_review_counts),
        )

    def has_activity(self) -> bool:
        """True when any additive measure is non-zero"""
        return any(getattr(self, name) != 0 for name in _ADDITIVE_FIELDS)

    @classmethod
    def sum(cls, buckets: Sequence["BaseMetrics"]) -> "BaseMetrics":
        total = cls()
        for bucket in buckets:
            total.add(bucket)
        return total


@dataclass(frozen=True)
class DerivedMetrics:
    """Final per-row metrics, computed once per assembly pass"""
    revenue: float = 0.0
    revenue_change_pct: float = 0.0
    orders: int = 0
    orders_change_pct: float = 0.0
    avg_ticket: float = 0.0
    avg_ticket_change_pct: float = 0.0
    new_customers: int = 0
    new_customer_pct: float = 0.0
    discounts: float = 0.0
    refunds: float = 0.0
    net_revenue: float = 0.0
    promotion_rate: float = 0.0
    refund_rate: float = 0.0
    promoted_orders: int = 0
    promoted_order_pct: float = 0.0
    ad_spend: float = 0.0
    ad_spend_change_pct: float = 0.0
    ad_revenue: float = 0.0
    roas: float = 0.0
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    ad_orders: int = 0
    ad_conversion_rate: float = 0.0
    avg_rating: float = 0.0
    review_count: int = 0
    rating_by_channel: Mapping[str, float] = field(default_factory=dict, hash=False)
    reviews_by_channel: Mapping[str, int] = field(default_factory=dict, hash=False)
    avg_delivery_time: float = 0.0

    def __post_init__(self):
        # Read-only views over private copies
        object.__setattr__(self, "rating_by_channel", MappingProxyType(dict(self.rating_by_channel)))
        object.__setattr__(self, "reviews_by_channel", MappingProxyType(dict(self.reviews_by_channel)))

    @classmethod
    def scalar_fields(cls) -> List[str]:
        """Names of the numeric (non-mapping) fields"""
        return [f.name for f in fields(cls) if f.name not in ("rating_by_channel", "reviews_by_channel")]


EMPTY_METRICS = DerivedMetrics()


# =============================================================================
# HIERARCHY
# =============================================================================

@dataclass(frozen=True)
class HierarchyRow:
    """One node of the flat, parent-linked hierarchy"""
    id: str
    level: HierarchyLevel
    name: str
    company_id: str
    metrics: DerivedMetrics
    parent_id: Optional[str] = None
    brand_id: Optional[str] = None
    channel_id: Optional[str] = None


@dataclass
class HierarchyResult:
    """Assembled rows plus the validation run over them"""
    rows: List[HierarchyRow] = field(default_factory=list)
    validation: Optional["ValidationResult"] = None

    def __iter__(self) -> Iterator[HierarchyRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def row_ids(self) -> List[str]:
        return [row.id for row in self.rows]

    @property
    def diagnostics(self) -> List["ValidationCheck"]:
        """Failed validation checks (duplicate ids, dangling parents, rollup drift)"""
        if self.validation is None:
            return []
        return [check for check in self.validation.checks if not check.passed]

    def get(self, row_id: str) -> Optional[HierarchyRow]:
        for row in self.rows:
            if row.id == row_id:
                return row
        return None

    def by_level(self, level: HierarchyLevel) -> List[HierarchyRow]:
        return [row for row in self.rows if row.level == level]

    def children_of(self, row_id: str) -> List[HierarchyRow]:
        return [row for row in self.rows if row.parent_id == row_id]
