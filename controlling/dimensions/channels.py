"""
Portal to channel mapping.

Upstream rows identify a platform by portal id; the dashboard speaks in
channel ids. Glovo has two portal ids since its migration.
"""

from typing import Mapping, Optional

from controlling.models import ChannelId


def resolve_channel_id(portal_id: Optional[str], portal_map: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Map a portal id to its channel id.

    A portal id that already is a channel id (e.g. "glovo") maps to itself.
    Unknown portals map to None.
    """
    if not portal_id:
        return None
    if portal_map and portal_id in portal_map:
        return portal_map[portal_id]
    try:
        return ChannelId(portal_id.lower()).value
    except ValueError:
        return None
