"""
Dimension preparation: snapshot deduplication followed by multi-platform grouping.
"""

from typing import Optional

import structlog

from controlling.config import HierarchySettings, get_settings
from controlling.dimensions.dedup import deduplicate_dimensions
from controlling.dimensions.grouping import address_key, group_entities, name_key
from controlling.models import DimensionSet

logger = structlog.get_logger(__name__)


def prepare_dimensions(
    dimensions: DimensionSet,
    settings: Optional[HierarchySettings] = None,
) -> DimensionSet:
    """
    Turn raw snapshot history into the dimension set the assembler expects.

    Args:
        dimensions: Raw snapshots, several per entity
        settings: Grouping switches; defaults to the application settings

    Returns:
        One record per logical entity, deleted entities included
    """
    if dimensions is None:
        raise ValueError("dimensions must not be None")
    settings = settings or get_settings().hierarchy

    deduped = deduplicate_dimensions(dimensions)

    brands = deduped.brands
    if settings.group_brands:
        brands = group_entities(brands, key_fn=name_key)

    addresses = deduped.addresses
    if settings.group_addresses:
        key_fn = address_key if settings.normalize_address_names else name_key
        addresses = group_entities(addresses, key_fn=key_fn)

    prepared = DimensionSet(
        companies=deduped.companies,
        brands=brands,
        addresses=addresses,
        channels=deduped.channels,
    )

    logger.info(
        "Dimensions prepared",
        companies=len(prepared.companies),
        brands=len(prepared.brands),
        addresses=len(prepared.addresses),
        channels=len(prepared.channels),
    )
    return prepared
