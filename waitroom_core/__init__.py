"""
Waitroom Core Library
=====================
Admission control against a remote waiting room service.
"""

__version__ = "0.1.0"

# Configuration
from waitroom_core.config import GateKeeperConfig, get_config_value

# Errors
from waitroom_core.exceptions import (
    WaitroomError,
    ConfigurationError,
    RoomPatternError,
)

# Models
from waitroom_core.models import (
    Action,
    BustState,
    PatternType,
    RoomConfig,
    CookieSignature,
    CookieToken,
    CookieState,
    TokenResponse,
    ValidateResult,
)

# Hashing
from waitroom_core.hashing import (
    sha256_hex,
    to_unix_timestamp,
    from_unix_timestamp,
    format_iso_z,
    parse_iso_timestamp,
)

# Query
from waitroom_core.query import NormalizedUrl, normalize_url, parse_query

# Rooms
from waitroom_core.rooms import match_room, is_checkout_buster

# Cookie
from waitroom_core.cookie import decode_cookie, encode_cookie, escape_cookie_value

# Signatures
from waitroom_core.signature import (
    SignatureOutcome,
    ExplicitSignature,
    CandidateList,
    compute_signature,
    compute_touched_signature,
    verify_signature,
)

# API Client
from waitroom_core.http import (
    ApiClient,
    ClientPool,
    RoomConfigCache,
    get_client_pool,
    get_room_cache,
    ApiClientError,
    TransportError,
    TransportTimeoutError,
    ProtocolError,
    ApiStatusError,
)

# Gatekeeper
from waitroom_core.gatekeeper import GateKeeper

__all__ = [
    # Configuration
    "GateKeeperConfig",
    "get_config_value",
    # Errors
    "WaitroomError",
    "ConfigurationError",
    "RoomPatternError",
    # Models
    "Action",
    "BustState",
    "PatternType",
    "RoomConfig",
    "CookieSignature",
    "CookieToken",
    "CookieState",
    "TokenResponse",
    "ValidateResult",
    # Hashing
    "sha256_hex",
    "to_unix_timestamp",
    "from_unix_timestamp",
    "format_iso_z",
    "parse_iso_timestamp",
    # Query
    "NormalizedUrl",
    "normalize_url",
    "parse_query",
    # Rooms
    "match_room",
    "is_checkout_buster",
    # Cookie
    "decode_cookie",
    "encode_cookie",
    "escape_cookie_value",
    # Signatures
    "SignatureOutcome",
    "ExplicitSignature",
    "CandidateList",
    "compute_signature",
    "compute_touched_signature",
    "verify_signature",
    # API Client
    "ApiClient",
    "ClientPool",
    "RoomConfigCache",
    "get_client_pool",
    "get_room_cache",
    "ApiClientError",
    "TransportError",
    "TransportTimeoutError",
    "ProtocolError",
    "ApiStatusError",
    # Gatekeeper
    "GateKeeper",
]
