"""
Cookie Codec
============
Serializes the visitor's validation state to and from the cookie payload.
"""

from typing import Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError
import structlog

from .models import CookieState

logger = structlog.get_logger(__name__)


def decode_cookie(raw: Optional[str]) -> Optional[CookieState]:
    """
    Decode a cookie value into CookieState.

    Accepts both the URL-escaped form stored in the browser and plain JSON.
    A payload that cannot be decoded is logged and treated as no state, so
    the visitor is simply issued a fresh token.

    Args:
        raw: Cookie value as received, may be empty

    Returns:
        CookieState, or None if there is no usable state
    """
    if not raw:
        return None

    payload = unquote(raw).strip()
    if not payload:
        return None

    try:
        return CookieState.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("cookie_decode_failed", error_count=e.error_count())
        return None


def encode_cookie(state: CookieState) -> str:
    """Serialize CookieState to its compact JSON payload."""
    return state.model_dump_json(by_alias=True)


def escape_cookie_value(payload: str) -> str:
    """URL-escape a JSON payload for use as a cookie value."""
    return quote(payload, safe="")
