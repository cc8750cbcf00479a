import json
import logging
import httpx
from typing import Optional, Any, Dict, List
from urllib.parse import quote
from pydantic import ValidationError
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type, before_sleep_log

from ..exceptions import ConfigurationError
from ..models import RoomConfig, TokenResponse
from .cache import RoomConfigCache, get_room_cache
from .pool import ClientPool, get_client_pool
from .exceptions import (
    ApiClientError,
    ApiStatusError,
    ProtocolError,
    TransportError,
    TransportTimeoutError,
)

logger = logging.getLogger(__name__)

NOT_SUPPLIED = "notsupplied"


class ApiClient:
    """
    Client for the remote waiting room API.

    Features:
    - Timeout retries via tenacity (other errors are never retried).
    - Clients borrowed from a shared, self-recycling ClientPool.
    - Room configuration cached per API key.
    - Standardized exception mapping.
    """

    def __init__(
        self,
        api_endpoint: str,
        public_key: str,
        timeout: float = 3.0,
        room_cache_ttl: int = 60,
        pool: Optional[ClientPool] = None,
        cache: Optional[RoomConfigCache] = None,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
    ):
        self.api_endpoint = (api_endpoint or "").rstrip("/")
        self.public_key = public_key or ""
        self.timeout = timeout
        self.room_cache_ttl = room_cache_ttl
        self.pool = pool or get_client_pool()
        self.cache = cache or get_room_cache()
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    def _check_configured(self):
        if not self.api_endpoint:
            raise ConfigurationError("API endpoint is not configured", setting="api_endpoint")
        if not self.public_key:
            raise ConfigurationError("API key is not configured", setting="public_key")

    def _map_exception(self, exc: Exception) -> Exception:
        """Map httpx exceptions to API client exceptions."""
        if isinstance(exc, httpx.TimeoutException):
            return TransportTimeoutError("Request timed out")
        if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
            return TransportError(f"Failed to connect: {str(exc)}")
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            return ApiStatusError(f"HTTP {status} Error", status_code=status, details=exc.response.text)

        return ApiClientError(f"Unexpected error: {str(exc)}")

    async def _send(self, method: str, path: str, **kwargs) -> str:
        async with self.pool.borrow() as client:
            try:
                response = await client.request(
                    method,
                    f"{self.api_endpoint}{path}",
                    headers={"x-api-key": self.public_key},
                    timeout=self.timeout,
                    **kwargs
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise self._map_exception(e) from e
            except Exception as e:
                logger.exception("Unexpected transport error calling %s %s", method, path)
                raise TransportError(f"Unexpected transport error: {str(e)}") from e
            return response.text

    async def _do_request(self, method: str, path: str, **kwargs) -> str:
        """Execute a request, retrying timeouts, and return the raw body."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransportTimeoutError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=self.timeout),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        body = ""
        async for attempt in retrying:
            with attempt:
                body = await self._send(method, path, **kwargs)
        return body

    def _parse_result(self, body: str) -> Any:
        if not body or not body.strip():
            raise ProtocolError("Empty response body")
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ProtocolError("Response body is not JSON", details=body[:200]) from e
        if not isinstance(payload, dict) or payload.get("result") is None:
            raise ProtocolError("Response has no result", details=body[:200])
        return payload["result"]

    async def get_token(
        self,
        url: str,
        user_agent: str = "",
        language: str = "",
        ip: str = "",
        token: str = NOT_SUPPLIED,
    ) -> TokenResponse:
        """
        Request a token for a visitor.

        A new token is requested with POST. An existing token is checked with
        GET against ``/v1/requests/{token}``.
        """
        self._check_configured()
        fields = {"url": url, "agent": user_agent, "lang": language, "ip": ip}

        if not token or token == NOT_SUPPLIED:
            body = await self._do_request("POST", "/v1/requests/", json=fields)
        else:
            body = await self._do_request("GET", f"/v1/requests/{quote(token, safe='')}", params=fields)

        result = self._parse_result(body)
        if not isinstance(result, dict):
            raise ProtocolError("Token result is not an object", details=body[:200])
        try:
            return TokenResponse.model_validate(result)
        except ValidationError as e:
            raise ProtocolError("Token result failed validation", details=str(e)) from e

    def _room_cache_key(self) -> str:
        return f"rooms_{self.public_key}"

    async def get_room_config_json(self) -> str:
        """Fetch the raw room configuration, honouring the cache TTL."""
        self._check_configured()
        key = self._room_cache_key()

        if self.room_cache_ttl > 0:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        body = await self._do_request("GET", "/v1/rooms")
        if not isinstance(self._parse_result(body), list):
            raise ProtocolError("Room result is not a list", details=body[:200])

        self.cache.set(key, body, self.room_cache_ttl)
        return body

    async def get_room_config(self) -> List[RoomConfig]:
        """Fetch the room configuration as RoomConfig models."""
        body = await self.get_room_config_json()
        rooms: List[Dict[str, Any]] = self._parse_result(body)
        try:
            return [RoomConfig.model_validate(room) for room in rooms]
        except ValidationError as e:
            raise ProtocolError("Room result failed validation", details=str(e)) from e
