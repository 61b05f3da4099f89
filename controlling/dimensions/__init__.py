"""
Dimension Processing Module
"""
from .channels import resolve_channel_id
from .dedup import deduplicate_and_filter_deleted, deduplicate_dimensions, deduplicate_latest
from .grouping import (
    address_key,
    expand_entity_ids,
    group_entities,
    identity_key,
    name_key,
    normalize_address,
)
from .prepare import prepare_dimensions

__all__ = [
    "resolve_channel_id",
    "deduplicate_latest",
    "deduplicate_and_filter_deleted",
    "deduplicate_dimensions",
    "group_entities",
    "name_key",
    "address_key",
    "identity_key",
    "normalize_address",
    "expand_entity_ids",
    "prepare_dimensions",
]
