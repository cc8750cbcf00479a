"""
Shared fixtures for waitroom-core tests.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from waitroom_core.config import GateKeeperConfig
from waitroom_core.http import ApiClient, ClientPool, RoomConfigCache
from waitroom_core.models import RoomConfig

PRIVATE_KEY = "secret"
PUBLIC_KEY = "pub-key"
API_ENDPOINT = "https://api.test"
WR_ENDPOINT = "https://wait.test"

SALE_ROOM = {
    "slug": "sale",
    "domain": "https://shop.test",
    "urlPattern": "",
    "patternType": "all",
    "queueActivatesOn": "2023-01-01T00:00:00Z",
    "timeout": 30,
    "ttl": 60,
}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeWaitingRoomApi:
    """httpx MockTransport handler standing in for the waiting room API."""

    def __init__(
        self,
        rooms: Optional[List[Dict[str, Any]]] = None,
        token_result: Optional[Dict[str, Any]] = None,
        token_status: int = 200,
    ):
        self.rooms = rooms if rooms is not None else [SALE_ROOM]
        self.token_result = token_result or {
            "token": "TOK-NEW",
            "promoted": False,
            "slug": "sale",
            "responseID": "resp-1",
        }
        self.token_status = token_status
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/rooms":
            return httpx.Response(200, json={"result": self.rooms})
        if request.url.path.startswith("/v1/requests"):
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "unavailable"})
            return httpx.Response(200, json={"result": self.token_result})
        return httpx.Response(404)

    @property
    def token_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/v1/requests")]


def make_api_client(handler, room_cache_ttl: int = 60, **kwargs) -> ApiClient:
    return ApiClient(
        API_ENDPOINT,
        PUBLIC_KEY,
        timeout=1.0,
        room_cache_ttl=room_cache_ttl,
        pool=ClientPool(transport=httpx.MockTransport(handler)),
        cache=RoomConfigCache(),
        retry_backoff=0,
        **kwargs
    )


def make_config(**overrides) -> GateKeeperConfig:
    values = dict(
        public_key=PUBLIC_KEY,
        private_key=PRIVATE_KEY,
        api_endpoint=API_ENDPOINT,
        waiting_room_endpoint=WR_ENDPOINT,
    )
    values.update(overrides)
    return GateKeeperConfig(**values)


@pytest.fixture
def sale_room() -> RoomConfig:
    return RoomConfig.model_validate(SALE_ROOM)


@pytest.fixture
def fake_api() -> FakeWaitingRoomApi:
    return FakeWaitingRoomApi()
