"""
Multi-Platform Identity Grouping

The same real-world brand or address is registered under a different numeric
id on every delivery platform. This module merges such rows into one logical
entity carrying a canonical id plus the set of every platform id (`all_ids`),
and expands user selections back to the full id set.

Features:
- Grouping by case-insensitive name within a company
- Grouping by normalized street address (Spanish/Catalan conventions)
- Grouping by explicit identifier lists from an identity service
- Selection expansion to all platform ids
"""

import re
import unicodedata
from dataclasses import replace
from typing import Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

import structlog

from controlling.models import AddressDim, BrandDim

logger = structlog.get_logger(__name__)

Groupable = TypeVar("Groupable", AddressDim, BrandDim)
KeyFn = Callable[[Union[AddressDim, BrandDim]], Optional[Hashable]]

_STREET_PREFIX = re.compile(
    r"^(?:c/\s*|(?:calle|carretera|carrer|avenida|avinguda|avda\.|av\.|paseo|passeig|plaza|plaça|pl\.|ronda|travesía|travessera)\s+)"
)
_PREPOSITIONS = re.compile(r"\b(de la|de les|dels|del|de|d')\b")
_POSTAL_SUFFIX = re.compile(r"\s+\d{5}\s*.*$")
_PUNCTUATION = re.compile(r"[,.\-/]")
_SPACES = re.compile(r"\s+")


# =============================================================================
# KEY RULES
# =============================================================================

def sort_ids(ids: Iterable[str]) -> List[str]:
    """Sort ids numerically when they are numeric, lexically otherwise"""
    return sorted(set(ids), key=lambda v: (0, int(v), v) if v.isdigit() else (1, 0, v))


def name_key(row: Union[AddressDim, BrandDim]) -> Optional[str]:
    """Case-insensitive name; blank names never merge"""
    name = (row.name or "").strip().lower()
    return name or None


def normalize_address(address: str) -> str:
    """
    Normalize an address string for grouping.

    Keeps only street name and number: drops everything after the first comma
    or postal code, street-type prefixes, prepositions, accents and punctuation.

    Example:
        normalize_address("Calle de Mozart 5, 28008 Madrid, Spain")  # "mozart 5"
        normalize_address("Carrer Mozart 5")                         # "mozart 5"
    """
    street = _POSTAL_SUFFIX.sub("", (address or "").split(",")[0]).strip().lower()
    street = _STREET_PREFIX.sub("", street)
    street = _PREPOSITIONS.sub("", street)
    street = "".join(
        ch for ch in unicodedata.normalize("NFD", street)
        if not unicodedata.combining(ch)
    )
    street = _PUNCTUATION.sub(" ", street)
    return _SPACES.sub(" ", street).strip()


def address_key(row: Union[AddressDim, BrandDim]) -> Optional[str]:
    """Normalized street address; blank results never merge"""
    return normalize_address(row.name) or None


def identity_key(identity_groups: Mapping[str, Iterable[str]]) -> KeyFn:
    """
    Build a key rule from explicit identifier lists.

    Args:
        identity_groups: Group name -> ids known to be the same entity

    Returns:
        Key function; rows whose ids are not listed stay singletons
    """
    member_to_group: Dict[str, str] = {}
    for group, ids in identity_groups.items():
        for entity_id in ids:
            member_to_group[str(entity_id)] = str(group)

    def key(row: Union[AddressDim, BrandDim]) -> Optional[str]:
        for entity_id in row.all_ids:
            if entity_id in member_to_group:
                return member_to_group[entity_id]
        return None

    return key


# =============================================================================
# GROUPING
# =============================================================================

def _recency(row: Union[AddressDim, BrandDim]) -> tuple:
    marker = row.snapshot_month
    return (True, marker) if marker is not None else (False,)


def group_entities(rows: Sequence[Groupable], key_fn: KeyFn = name_key) -> List[Groupable]:
    """
    Merge rows of the same company that share a group key.

    The canonical record of each group is its most recent snapshot (the first
    one in input order on ties). Its `all_ids` becomes the sorted union of the
    members' ids, and it is deleted only if every member is deleted.
    Rows without a key stay singletons. Regrouping a grouped list is a no-op.
    """
    if rows is None:
        raise ValueError("rows must not be None")

    groups: Dict[Tuple[str, Hashable], List[Groupable]] = {}
    for row in rows:
        key = key_fn(row)
        group_key = (row.company_id, ("key", key) if key is not None else ("id", row.id))
        groups.setdefault(group_key, []).append(row)

    result: List[Groupable] = []
    merged = 0
    for members in groups.values():
        canonical = members[0]
        for member in members[1:]:
            if _recency(member) > _recency(canonical):
                canonical = member

        all_ids = sort_ids(entity_id for member in members for entity_id in member.all_ids)
        changes = {
            "all_ids": tuple(all_ids),
            "deleted": all(member.deleted for member in members),
        }
        if isinstance(canonical, AddressDim) and canonical.brand_id is None:
            by_recency = sorted(members, key=_recency, reverse=True)
            changes["brand_id"] = next((m.brand_id for m in by_recency if m.brand_id), None)

        if len(members) > 1:
            merged += len(members) - 1
        result.append(replace(canonical, **changes))

    if merged:
        logger.debug("Multi-platform rows merged", input_rows=len(rows), groups=len(result), merged=merged)
    return result


def expand_entity_ids(
    selected_ids: Sequence[str],
    known_entities: Sequence[Union[AddressDim, BrandDim]],
) -> List[str]:
    """
    Expand a selection to every platform id of the selected entities.

    A selected id matches an entity by its canonical id or any of its
    `all_ids`. Unknown ids are kept as they are, so the result always contains
    every selected id.
    """
    expanded: List[str] = []
    for selected in selected_ids:
        selected = str(selected)
        entity = next(
            (e for e in known_entities if e.id == selected or selected in e.all_ids),
            None,
        )
        for entity_id in (entity.all_ids if entity is not None else (selected,)):
            if entity_id not in expanded:
                expanded.append(entity_id)
    return expanded
