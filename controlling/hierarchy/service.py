"""
Hierarchy Service

Orchestrates one hierarchy fetch: six concurrent loads, dimension preparation,
two aggregation passes and assembly.

Features:
- Fan-out/fan-in of the four dimension and two metric loads
- Whole-call failure with a retryable error when any load fails
- Stale in-flight requests cancelled when the scope changes
- Identical concurrent requests share one task
"""

import asyncio
from typing import List, Optional, Sequence, Tuple

import structlog

from controlling.config import HierarchySettings, get_settings
from controlling.dimensions import expand_entity_ids, prepare_dimensions
from controlling.hierarchy.assembler import build_hierarchy
from controlling.hierarchy.periods import HierarchyRequest
from controlling.hierarchy.sources import HierarchyDataSource
from controlling.hierarchy.validation import ValidationStatus
from controlling.models import DimensionSet, FactRow, HierarchyResult

logger = structlog.get_logger(__name__)


class HierarchyFetchError(RuntimeError):
    """A collaborator load failed; the whole call failed and may be retried"""

    retryable = True


class HierarchyIntegrityError(RuntimeError):
    """Raised in strict mode when the assembled hierarchy fails validation"""

    def __init__(self, result: HierarchyResult):
        self.result = result
        names = ", ".join(check.name for check in result.diagnostics)
        super().__init__(f"Hierarchy failed validation: {names}")


def filter_facts(
    rows: Sequence[FactRow],
    brand_ids: Sequence[str] = (),
    address_ids: Sequence[str] = (),
    channel_ids: Sequence[str] = (),
) -> List[FactRow]:
    """Keep rows matching every non-empty id filter"""
    brands, addresses, channels = set(brand_ids), set(address_ids), set(channel_ids)
    return [
        row
        for row in rows
        if (not brands or str(row.brand_id) in brands)
        and (not addresses or str(row.address_id) in addresses)
        and (not channels or str(row.channel_id) in channels)
    ]


class HierarchyService:
    """
    Fetch and assemble hierarchies for dashboard requests.

    Example:
        service = HierarchyService(source)
        result = await service.fetch(HierarchyRequest(company_ids=["1"], start_date=..., end_date=...))
    """

    def __init__(self, source: HierarchyDataSource, settings: Optional[HierarchySettings] = None):
        self.source = source
        self.settings = settings or get_settings().hierarchy
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_key: Optional[Tuple[str, ...]] = None

    async def fetch(self, request: HierarchyRequest) -> HierarchyResult:
        """
        Fetch the hierarchy for a request.

        A call whose request was superseded by a newer one with a different
        key is cancelled and raises `asyncio.CancelledError`.

        Raises:
            HierarchyFetchError: A load failed
            HierarchyIntegrityError: Strict validation failed
        """
        if not request.company_ids:
            return HierarchyResult(rows=[], validation=None)

        key = request.request_key
        task = self._inflight
        if task is not None and not task.done() and self._inflight_key == key:
            logger.debug("Joining in-flight hierarchy request")
        else:
            if task is not None and not task.done():
                logger.info("Cancelling stale hierarchy request", stale_key=self._inflight_key)
                task.cancel()
            task = asyncio.ensure_future(self._run(request))
            self._inflight, self._inflight_key = task, key

        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight, self._inflight_key = None, None

    async def _load(self, request: HierarchyRequest):
        previous_start, previous_end = request.previous_range
        company_ids = request.company_ids
        try:
            return await asyncio.gather(
                self.source.load_companies(company_ids),
                self.source.load_brands(company_ids),
                self.source.load_addresses(company_ids),
                self.source.load_channels(),
                self.source.load_metrics(company_ids, request.start_date, request.end_date),
                self.source.load_metrics(company_ids, previous_start, previous_end),
            )
        except Exception as e:
            logger.error("Hierarchy load failed", error=str(e), companies=company_ids)
            raise HierarchyFetchError(f"Failed to load hierarchy data: {e}") from e

    async def _run(self, request: HierarchyRequest) -> HierarchyResult:
        # Runs in its own task, so bound context stays scoped to this request
        with structlog.contextvars.bound_contextvars(
            company_ids=request.company_ids,
            start_date=request.start_date.isoformat(),
            end_date=request.end_date.isoformat(),
        ):
            return await self._build(request)

    async def _build(self, request: HierarchyRequest) -> HierarchyResult:
        companies, brands, addresses, channels, current, previous = await self._load(request)

        dimensions = prepare_dimensions(
            DimensionSet(companies=companies, brands=brands, addresses=addresses, channels=channels),
            self.settings,
        )

        if request.brand_ids or request.address_ids or request.channel_ids:
            brand_ids = expand_entity_ids(request.brand_ids, dimensions.brands)
            address_ids = expand_entity_ids(request.address_ids, dimensions.addresses)
            current = filter_facts(current, brand_ids, address_ids, request.channel_ids)
            previous = filter_facts(previous, brand_ids, address_ids, request.channel_ids)

        result = build_hierarchy(dimensions, current, previous, settings=self.settings)

        if result.validation is not None:
            logger.info(
                "Hierarchy built",
                rows=len(result),
                status=result.validation.status.value,
                diagnostics=[check.name for check in result.diagnostics],
            )
            if self.settings.strict_validation and result.validation.status == ValidationStatus.FAILED:
                raise HierarchyIntegrityError(result)
        else:
            logger.info("Hierarchy built", rows=len(result))

        return result
