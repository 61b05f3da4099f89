"""
Data-access collaborator contract for the hierarchy service.

Concrete sources wrap a warehouse, an RPC layer or fixed fixtures; the engine
only sees typed rows. Timeouts and retries belong to the source.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import date
from typing import Iterable, List, Sequence

from controlling.models import AddressDim, BrandDim, ChannelDim, CompanyDim, DimensionSet, FactRow


class HierarchyDataSource(ABC):
    """Async loader for dimension snapshots and period facts"""

    @abstractmethod
    async def load_companies(self, company_ids: Sequence[str]) -> List[CompanyDim]:
        """All company snapshots for the given ids"""

    @abstractmethod
    async def load_brands(self, company_ids: Sequence[str]) -> List[BrandDim]:
        """All brand snapshots of the given companies"""

    @abstractmethod
    async def load_addresses(self, company_ids: Sequence[str]) -> List[AddressDim]:
        """All address snapshots of the given companies"""

    @abstractmethod
    async def load_channels(self) -> List[ChannelDim]:
        """All channel (portal) snapshots"""

    @abstractmethod
    async def load_metrics(self, company_ids: Sequence[str], start_date: date, end_date: date) -> List[FactRow]:
        """Fact rows of the given companies within [start_date, end_date]"""

    async def load_dimensions(self, company_ids: Sequence[str]) -> DimensionSet:
        """Load the four dimension lists concurrently"""
        companies, brands, addresses, channels = await asyncio.gather(
            self.load_companies(company_ids),
            self.load_brands(company_ids),
            self.load_addresses(company_ids),
            self.load_channels(),
        )
        return DimensionSet(companies=companies, brands=brands, addresses=addresses, channels=channels)


class InMemoryDataSource(HierarchyDataSource):
    """
    Serve fixed snapshots and dated facts from memory.

    Facts are given as (day, FactRow) pairs and filtered by date range and
    company on every call.
    """

    def __init__(
        self,
        dimensions: DimensionSet,
        facts: Iterable[tuple] = (),
    ):
        self.dimensions = dimensions
        self.facts = list(facts)

    async def load_companies(self, company_ids: Sequence[str]) -> List[CompanyDim]:
        wanted = set(company_ids)
        return [c for c in self.dimensions.companies if c.id in wanted]

    async def load_brands(self, company_ids: Sequence[str]) -> List[BrandDim]:
        wanted = set(company_ids)
        return [b for b in self.dimensions.brands if b.company_id in wanted]

    async def load_addresses(self, company_ids: Sequence[str]) -> List[AddressDim]:
        wanted = set(company_ids)
        return [a for a in self.dimensions.addresses if a.company_id in wanted]

    async def load_channels(self) -> List[ChannelDim]:
        return list(self.dimensions.channels)

    async def load_metrics(self, company_ids: Sequence[str], start_date: date, end_date: date) -> List[FactRow]:
        wanted = set(company_ids)
        return [
            row
            for day, row in self.facts
            if start_date <= day <= end_date and row.company_id in wanted
        ]
