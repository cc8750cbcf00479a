from .client import ApiClient, NOT_SUPPLIED
from .pool import ClientPool, get_client_pool
from .cache import RoomConfigCache, get_room_cache
from .exceptions import (
    ApiClientError,
    TransportError,
    TransportTimeoutError,
    ProtocolError,
    ApiStatusError
)

__all__ = [
    "ApiClient",
    "NOT_SUPPLIED",
    "ClientPool",
    "get_client_pool",
    "RoomConfigCache",
    "get_room_cache",
    "ApiClientError",
    "TransportError",
    "TransportTimeoutError",
    "ProtocolError",
    "ApiStatusError"
]
