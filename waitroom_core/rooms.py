"""
Room Matching
=============
Resolves which waiting room, if any, protects a host and path.
"""

import re
from typing import Optional, Sequence, Pattern
import structlog

from .exceptions import RoomPatternError
from .models import BustState, PatternType, RoomConfig

logger = structlog.get_logger(__name__)


def _room_domain(host: str) -> str:
    # Rooms are always configured against an https origin
    return f"https://{host}"


def _compile(room: RoomConfig, field: str, pattern: str) -> Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RoomPatternError(room.slug, field, pattern, str(e)) from e


def _matches(room: RoomConfig, path: str) -> bool:
    if room.pattern_type == PatternType.REGEX.value:
        return _compile(room, "urlPattern", room.url_pattern).search(path) is not None
    if room.pattern_type == PatternType.CONTAINS.value:
        return room.url_pattern in path
    if room.pattern_type == PatternType.ALL.value:
        return True
    return False


def match_room(host: str, path: str, rooms: Sequence[RoomConfig]) -> Optional[RoomConfig]:
    """
    Find the first room protecting a host and path.

    Args:
        host: Request hostname
        path: Request path including the query string
        rooms: Room configurations in priority order

    Returns:
        The first matching room, or None
    """
    domain = _room_domain(host)

    for room in rooms:
        if room.domain != domain:
            continue

        try:
            matched = _matches(room, path)
        except RoomPatternError as e:
            logger.warning("room_pattern_invalid", slug=room.slug, error=str(e))
            continue

        if matched:
            return room

    return None


def is_checkout_buster(host: str, path: str, rooms: Sequence[RoomConfig]) -> BustState:
    """
    Check whether a path is one of the rooms' checkout pages.

    Rooms without a checkout pattern are ignored. A room whose checkout
    pattern does not compile is logged and skipped.
    """
    domain = _room_domain(host)

    for room in rooms:
        if room.domain != domain or not room.checkout:
            continue

        try:
            pattern = _compile(room, "checkout", room.checkout)
        except RoomPatternError as e:
            logger.warning("room_checkout_pattern_invalid", slug=room.slug, error=str(e))
            continue

        if pattern.search(path):
            return BustState.BUSTED

    return BustState.NOT_BUSTED
