"""
Query Normalization
===================
Extracts the waiting room control parameters from a request URL and rebuilds
the URL without them.
"""

from dataclasses import dataclass
from typing import Dict
from urllib.parse import urlsplit, unquote

CH_CODE = "ch-code"
CH_ID = "ch-id"
CH_ID_SIGNATURE = "ch-id-signature"
CH_PUBLIC_KEY = "ch-public-key"
CH_REQUESTED = "ch-requested"
CH_FRESH = "ch-fresh"

CONTROL_PARAMS = (
    CH_CODE,
    CH_FRESH,
    CH_ID,
    CH_ID_SIGNATURE,
    CH_PUBLIC_KEY,
    CH_REQUESTED,
)

# Values the waiting room front end emits for unset parameters
ABSENT_SENTINELS = ("undefined", "null")


@dataclass(frozen=True)
class NormalizedUrl:
    """A request URL split into its admission-relevant parts."""
    target_url: str
    cleaned_url: str
    redirect_to_clean: bool
    host: str
    path: str
    path_and_query: str
    ch_code: str = ""
    ch_id: str = ""
    ch_id_signature: str = ""
    ch_public_key: str = ""
    ch_requested: str = ""


def parse_query(query: str) -> Dict[str, str]:
    """
    Parse a query string into an ordered mapping.

    Duplicate keys keep the last value. Pairs without ``=`` map to an empty
    string. Values are returned as they appear, undecoded.
    """
    if query.startswith("?"):
        query = query[1:]

    params: Dict[str, str] = {}
    if not query:
        return params

    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        params[key] = value
    return params


def _control_value(params: Dict[str, str], name: str) -> str:
    value = unquote(params.get(name, ""))
    if value in ABSENT_SENTINELS:
        return ""
    return value


def normalize_url(url: str) -> NormalizedUrl:
    """
    Split a request URL and strip the control parameters from it.

    Args:
        url: Absolute request URL

    Returns:
        NormalizedUrl with the cleaned URL, the decoded control values and
        whether anything was stripped
    """
    parts = urlsplit(url)
    host = parts.hostname or ""
    path = parts.path or "/"
    base = f"{parts.scheme}://{parts.netloc}{path}"

    target_url = f"{base}?{parts.query}" if parts.query else base
    params = parse_query(parts.query)

    remaining = {k: v for k, v in params.items() if k not in CONTROL_PARAMS}
    clean_query = "&".join(f"{k}={v}" for k, v in remaining.items())
    cleaned_url = f"{base}?{clean_query}" if clean_query else base

    return NormalizedUrl(
        target_url=target_url,
        cleaned_url=cleaned_url,
        redirect_to_clean=len(remaining) < len(params),
        host=host,
        path=path,
        path_and_query=f"{path}?{parts.query}" if parts.query else path,
        ch_code=_control_value(params, CH_CODE),
        ch_id=_control_value(params, CH_ID),
        ch_id_signature=_control_value(params, CH_ID_SIGNATURE),
        ch_public_key=_control_value(params, CH_PUBLIC_KEY),
        ch_requested=_control_value(params, CH_REQUESTED),
    )
