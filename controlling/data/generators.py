"""
Synthetic Data Generator

Generates realistic restaurant-delivery data for tests and notebooks.
Includes:
- Monthly dimension snapshots with soft deletes
- Brands and addresses registered under a different id on every platform,
  with the address string formatted differently per platform
- Raw order rows, pre-aggregated advertising rows and malformed rows
"""

import random
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl
import structlog
from faker import Faker

from controlling.metrics.aggregator import KEY_COLUMNS
from controlling.dimensions.grouping import normalize_address
from controlling.models import AddressDim, BrandDim, ChannelDim, CompanyDim, DimensionSet, FactRow

logger = structlog.get_logger(__name__)

DatedFact = Tuple[date, FactRow]


# =============================================================================
# CONFIGURATION
# =============================================================================

# Platform -> portal ids orders arrive through. Glovo migrated to a second portal.
PLATFORM_PORTALS = {
    "glovo": ["E22BC362", "E22BC362-2"],
    "ubereats": ["3CCD6861"],
    "justeat": ["JUSTEAT"],
}

CHANNELS = [
    ("E22BC362", "Glovo"),
    ("E22BC362-2", "Glovo (new)"),
    ("3CCD6861", "Uber Eats"),
    ("JUSTEAT", "Just Eat"),
]

CUISINES = ["Burger", "Pizza", "Sushi", "Poke", "Tacos", "Kebab", "Wok", "Pasta", "Salads", "Bowls"]
STREET_TYPES = ["Calle", "Carrer", "Avenida", "Passeig"]


@dataclass
class Registration:
    """One platform registration of an address, as seen by fact rows"""
    company_id: str
    brand_id: str
    address_id: str
    portals: List[str] = field(default_factory=list)


# =============================================================================
# GENERATORS
# =============================================================================

class DimensionGenerator:
    """Generate companies, multi-platform brands and addresses, and channels"""

    def __init__(self, seed: int = 42, deleted_rate: float = 0.1):
        self.rng = random.Random(seed)
        self.fake = Faker("es_ES")
        self.fake.seed_instance(seed)
        self.deleted_rate = deleted_rate
        self.registrations: List[Registration] = []
        self._next_id = 1000

    def _new_id(self) -> str:
        self._next_id += self.rng.randint(1, 50)
        return str(self._next_id)

    def _snapshots(self, months: Sequence[date]) -> List[Tuple[date, bool]]:
        """(snapshot month, deleted) pairs; only the latest snapshot may be deleted"""
        first = self.rng.randrange(len(months))
        active = list(months[first:])
        deleted_last = self.rng.random() < self.deleted_rate
        return [(month, deleted_last and i == len(active) - 1) for i, month in enumerate(active)]

    def _street(self, used: set) -> Tuple[str, str, int]:
        while True:
            street_type = self.rng.choice(STREET_TYPES)
            name = self.fake.last_name()
            number = self.rng.randint(1, 250)
            key = normalize_address(f"{street_type} {name} {number}")
            if key not in used:
                used.add(key)
                return street_type, name, number

    def _address_variants(self, street_type: str, name: str, number: int) -> Dict[str, str]:
        """The same street as each platform formats it"""
        return {
            "glovo": f"{street_type} de {name} {number}, {self.fake.postcode()} {self.fake.city()}",
            "ubereats": f"{'C/' if street_type == 'Calle' else street_type} {name} {number}",
            "justeat": f"{street_type.upper()} {name.upper()} {number}",
        }

    def generate(
        self,
        n_companies: int = 3,
        brands_per_company: int = 3,
        addresses_per_brand: int = 2,
        months: Sequence[date] = (date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)),
    ) -> DimensionSet:
        """Generate snapshot history for the whole dimension set"""
        companies: List[CompanyDim] = []
        brands: List[BrandDim] = []
        addresses: List[AddressDim] = []
        self.registrations = []

        for _ in range(n_companies):
            company_id = self._new_id()
            company_name = self.fake.company()
            for month in months:
                companies.append(CompanyDim(id=company_id, name=company_name, snapshot_month=month))

            brand_names: set = set()
            streets: set = set()
            for _ in range(brands_per_company):
                brand_name = f"{self.rng.choice(CUISINES)} {self.fake.first_name()}"
                while brand_name.lower() in brand_names:
                    brand_name = f"{self.rng.choice(CUISINES)} {self.fake.first_name()}"
                brand_names.add(brand_name.lower())

                platforms = self.rng.sample(list(PLATFORM_PORTALS), k=self.rng.randint(1, len(PLATFORM_PORTALS)))
                brand_ids = {platform: self._new_id() for platform in platforms}
                for platform, brand_id in brand_ids.items():
                    # Platforms disagree on capitalization
                    name = brand_name.upper() if platform == "justeat" else brand_name
                    for month, deleted in self._snapshots(months):
                        brands.append(BrandDim(
                            id=brand_id,
                            name=name,
                            company_id=company_id,
                            deleted=deleted,
                            snapshot_month=month,
                        ))

                for _ in range(addresses_per_brand):
                    variants = self._address_variants(*self._street(streets))
                    for platform, brand_id in brand_ids.items():
                        address_id = self._new_id()
                        for month, deleted in self._snapshots(months):
                            addresses.append(AddressDim(
                                id=address_id,
                                name=variants[platform],
                                company_id=company_id,
                                brand_id=brand_id,
                                deleted=deleted,
                                snapshot_month=month,
                            ))
                        self.registrations.append(
                            Registration(company_id, brand_id, address_id, list(PLATFORM_PORTALS[platform]))
                        )

        channels = [ChannelDim(id=portal_id, name=name, snapshot_month=months[-1]) for portal_id, name in CHANNELS]

        logger.debug(
            "Dimensions generated",
            companies=n_companies,
            brand_snapshots=len(brands),
            address_snapshots=len(addresses),
        )
        return DimensionSet(companies=companies, brands=brands, addresses=addresses, channels=channels)


class FactGenerator:
    """Generate dated fact rows for known platform registrations"""

    def __init__(self, registrations: Sequence[Registration], seed: int = 42, malformed_rate: float = 0.0):
        if not registrations:
            raise ValueError("registrations must not be empty")
        self.registrations = list(registrations)
        self.rng = random.Random(seed)
        self.np_rng = np.random.default_rng(seed)
        self.malformed_rate = malformed_rate

    def _order(self, registration: Registration) -> FactRow:
        revenue = round(float(self.np_rng.lognormal(mean=3.0, sigma=0.4)), 2)
        discount = round(revenue * self.rng.choice([0, 0, 0, 0.1, 0.2]), 2)
        refund = round(revenue, 2) if self.rng.random() < 0.03 else 0.0
        reviewed = self.rng.random() < 0.15
        return FactRow(
            company_id=registration.company_id,
            brand_id=registration.brand_id,
            address_id=registration.address_id,
            channel_id=self.rng.choice(registration.portals),
            revenue=revenue,
            new_customer_flag=self.rng.random() < 0.2,
            discount_amount=discount,
            refund_amount=refund,
            rating=float(self.rng.randint(1, 5)) if reviewed else 0.0,
            review_count=1 if reviewed else 0,
            delivery_time_minutes=float(max(0, round(self.np_rng.normal(32, 12)))),
        )

    def _ad_row(self, registration: Registration) -> FactRow:
        impressions = int(self.np_rng.poisson(800))
        clicks = int(self.np_rng.binomial(impressions, 0.04))
        ad_orders = int(self.np_rng.binomial(clicks, 0.1))
        return FactRow(
            company_id=registration.company_id,
            brand_id=registration.brand_id,
            address_id=registration.address_id,
            channel_id=registration.portals[0],
            order_count=0,
            ad_spend=round(self.rng.uniform(5, 40), 2),
            ad_revenue=round(ad_orders * self.rng.uniform(15, 35), 2),
            impressions=impressions,
            clicks=clicks,
            ad_orders=ad_orders,
        )

    def _malformed(self, row: FactRow) -> FactRow:
        missing = self.rng.choice(KEY_COLUMNS)
        values = asdict(row)
        values[missing] = self.rng.choice([None, "", "  "])
        return FactRow(**values)

    def generate(
        self,
        start_date: date,
        end_date: date,
        orders_per_day: int = 20,
        ad_rate: float = 0.3,
    ) -> List[DatedFact]:
        """Generate facts for every day in [start_date, end_date]"""
        facts: List[DatedFact] = []
        day = start_date
        while day <= end_date:
            for _ in range(int(self.np_rng.poisson(orders_per_day))):
                row = self._order(self.rng.choice(self.registrations))
                if self.rng.random() < self.malformed_rate:
                    row = self._malformed(row)
                facts.append((day, row))
            for registration in self.registrations:
                if self.rng.random() < ad_rate:
                    facts.append((day, self._ad_row(registration)))
            day += timedelta(days=1)
        return facts


def facts_to_frame(facts: Sequence[DatedFact]) -> pl.DataFrame:
    """Dated facts as a polars DataFrame with a `day` column"""
    return pl.DataFrame([{"day": day, **asdict(row)} for day, row in facts], infer_schema_length=None)


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class DataGenerator:
    """Main data generator orchestrator"""

    def __init__(self, seed: int = 42):
        self.seed = seed

    def generate_all(
        self,
        start_date: date = date(2024, 1, 1),
        end_date: date = date(2024, 3, 31),
        n_companies: int = 3,
        brands_per_company: int = 3,
        addresses_per_brand: int = 2,
        orders_per_day: int = 20,
        deleted_rate: float = 0.1,
        malformed_rate: float = 0.0,
        months: Optional[Sequence[date]] = None,
    ) -> dict:
        """Generate a complete dataset: dimension snapshots and dated facts"""
        if months is None:
            months = []
            month = start_date.replace(day=1)
            while month <= end_date:
                months.append(month)
                month = (month + timedelta(days=32)).replace(day=1)

        dimension_gen = DimensionGenerator(seed=self.seed, deleted_rate=deleted_rate)
        dimensions = dimension_gen.generate(n_companies, brands_per_company, addresses_per_brand, months)
        facts = FactGenerator(
            dimension_gen.registrations, seed=self.seed, malformed_rate=malformed_rate
        ).generate(start_date, end_date, orders_per_day=orders_per_day)

        logger.info(
            "Synthetic dataset generated",
            seed=self.seed,
            companies=n_companies,
            registrations=len(dimension_gen.registrations),
            facts=len(facts),
        )
        return {
            "dimensions": dimensions,
            "facts": facts,
            "registrations": dimension_gen.registrations,
        }
