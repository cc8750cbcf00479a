"""
API Client Tests
================
Tests for the waiting room API client, its client pool and room cache.
"""

import asyncio
import json

import httpx
import pytest

from conftest import API_ENDPOINT, PUBLIC_KEY, SALE_ROOM, FakeWaitingRoomApi, make_api_client


class TestGetToken:
    """Tests for token requests."""

    @pytest.mark.asyncio
    async def test_new_token_is_posted(self, fake_api):
        """Without a token the client should POST the visitor details."""
        client = make_api_client(fake_api)

        result = await client.get_token("https://shop.test/", "UA/1.0", "en-GB", "1.2.3.4")

        request = fake_api.token_requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API_ENDPOINT}/v1/requests/"
        assert request.headers["x-api-key"] == PUBLIC_KEY
        assert json.loads(request.content) == {
            "url": "https://shop.test/",
            "agent": "UA/1.0",
            "lang": "en-GB",
            "ip": "1.2.3.4",
        }
        assert result.token == "TOK-NEW"
        assert result.promoted is False
        assert result.response_id == "resp-1"

    @pytest.mark.asyncio
    async def test_existing_token_uses_get(self, fake_api):
        """With a token the client should GET it by path."""
        client = make_api_client(fake_api)

        await client.get_token("https://shop.test/", token="TOK1")

        request = fake_api.token_requests[0]
        assert request.method == "GET"
        assert request.url.path == "/v1/requests/TOK1"
        assert request.url.params["url"] == "https://shop.test/"

    @pytest.mark.asyncio
    async def test_parses_token_fields(self):
        """Should parse hash and requested from the result."""
        api = FakeWaitingRoomApi(token_result={
            "token": "T",
            "promoted": True,
            "slug": "sale",
            "hash": "abc",
            "requested": "2024-01-01T00:00:00Z",
        })
        client = make_api_client(api)

        result = await client.get_token("https://shop.test/")

        assert result.promoted is True
        assert result.hash == "abc"
        assert result.requested.isoformat() == "2024-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_missing_configuration(self, fake_api):
        """An empty endpoint or key should be a configuration error."""
        from waitroom_core.exceptions import ConfigurationError
        from waitroom_core.http import ApiClient, ClientPool, RoomConfigCache

        pool = ClientPool(transport=httpx.MockTransport(fake_api))

        with pytest.raises(ConfigurationError):
            await ApiClient("", PUBLIC_KEY, pool=pool, cache=RoomConfigCache()).get_token("u")
        with pytest.raises(ConfigurationError):
            await ApiClient(API_ENDPOINT, "", pool=pool, cache=RoomConfigCache()).get_token("u")

        assert fake_api.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["", "   ", "not json", '{"other": 1}', '{"result": null}', '{"result": [1]}'])
    async def test_malformed_body_is_protocol_error(self, body):
        """Empty, non-JSON or result-less bodies should fail hard."""
        from waitroom_core.http import ProtocolError

        client = make_api_client(lambda request: httpx.Response(200, text=body))

        with pytest.raises(ProtocolError):
            await client.get_token("https://shop.test/")


class TestRetry:
    """Tests for the transport retry policy."""

    @pytest.mark.asyncio
    async def test_timeout_retries_three_times(self):
        """A timeout should be attempted exactly three times then surface."""
        from waitroom_core.http import TransportTimeoutError

        attempts = 0

        def handler(request):
            nonlocal attempts
            attempts += 1
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_api_client(handler)

        with pytest.raises(TransportTimeoutError):
            await client.get_token("https://shop.test/")

        assert attempts == 3

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, fake_api):
        """A transient timeout should be absorbed by a retry."""
        attempts = 0

        def handler(request):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise httpx.ConnectTimeout("slow", request=request)
            return fake_api(request)

        client = make_api_client(handler)

        result = await client.get_token("https://shop.test/")

        assert result.token == "TOK-NEW"
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_connection_error_is_not_retried(self):
        """A non-timeout transport error should fail on the first attempt."""
        from waitroom_core.http import TransportError, TransportTimeoutError

        attempts = 0

        def handler(request):
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("refused", request=request)

        client = make_api_client(handler)

        with pytest.raises(TransportError) as exc_info:
            await client.get_token("https://shop.test/")

        assert not isinstance(exc_info.value, TransportTimeoutError)
        assert attempts == 1

    @pytest.mark.asyncio
    async def test_status_error_is_not_retried(self):
        """Application errors should surface immediately with the status."""
        from waitroom_core.http import ApiStatusError

        api = FakeWaitingRoomApi(token_status=500)
        client = make_api_client(api)

        with pytest.raises(ApiStatusError) as exc_info:
            await client.get_token("https://shop.test/")

        assert exc_info.value.status_code == 500
        assert len(api.token_requests) == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_transport_error(self):
        """Failures outside httpx's hierarchy should still map to TransportError."""
        from waitroom_core.http import TransportError

        attempts = 0

        def handler(request):
            nonlocal attempts
            attempts += 1
            raise RuntimeError("Event loop is closed")

        client = make_api_client(handler)

        with pytest.raises(TransportError):
            await client.get_token("https://shop.test/")

        assert attempts == 1


class TestRoomConfig:
    """Tests for room configuration fetching and caching."""

    @pytest.mark.asyncio
    async def test_parses_rooms(self, fake_api):
        """Should return RoomConfig models."""
        client = make_api_client(fake_api)

        rooms = await client.get_room_config()

        assert [r.slug for r in rooms] == ["sale"]
        assert rooms[0].pattern_type == "all"
        assert rooms[0].timeout == 30
        assert fake_api.requests[0].headers["x-api-key"] == PUBLIC_KEY

    @pytest.mark.asyncio
    async def test_legacy_pattern_type_key(self):
        """Should accept the PatternType spelling."""
        room = dict(SALE_ROOM)
        room["PatternType"] = room.pop("patternType")
        client = make_api_client(FakeWaitingRoomApi(rooms=[room]))

        rooms = await client.get_room_config()

        assert rooms[0].pattern_type == "all"

    @pytest.mark.asyncio
    async def test_missing_timeout_defaults_to_zero(self):
        """A room sent without a timeout should get 0 minutes."""
        room = {k: v for k, v in SALE_ROOM.items() if k != "timeout"}
        client = make_api_client(FakeWaitingRoomApi(rooms=[room]))

        rooms = await client.get_room_config()

        assert rooms[0].timeout == 0

    @pytest.mark.asyncio
    async def test_ttl_zero_always_fetches(self, fake_api):
        """A TTL of 0 should hit the network on every call."""
        client = make_api_client(fake_api, room_cache_ttl=0)

        await client.get_room_config_json()
        await client.get_room_config_json()

        assert len(fake_api.requests) == 2

    @pytest.mark.asyncio
    async def test_cached_until_expiry(self, fake_api):
        """A positive TTL should serve the cache until it expires."""
        from waitroom_core.http import RoomConfigCache

        now = [1000.0]
        client = make_api_client(fake_api, room_cache_ttl=60)
        client.cache = RoomConfigCache(time_func=lambda: now[0])

        first = await client.get_room_config_json()
        now[0] += 59
        second = await client.get_room_config_json()

        assert first == second
        assert len(fake_api.requests) == 1

        now[0] += 1
        await client.get_room_config_json()

        assert len(fake_api.requests) == 2

    @pytest.mark.asyncio
    async def test_cache_is_keyed_by_api_key(self, fake_api):
        """Different API keys should not share cached rooms."""
        from waitroom_core.http import ApiClient

        client = make_api_client(fake_api)
        other = ApiClient(
            API_ENDPOINT, "other-key", pool=client.pool, cache=client.cache, retry_backoff=0
        )

        await client.get_room_config_json()
        await other.get_room_config_json()

        assert len(fake_api.requests) == 2

    @pytest.mark.asyncio
    async def test_bad_room_payload_is_not_cached(self):
        """A malformed room list should fail and leave the cache empty."""
        from waitroom_core.http import ProtocolError

        client = make_api_client(lambda request: httpx.Response(200, json={"result": {"slug": "x"}}))

        with pytest.raises(ProtocolError):
            await client.get_room_config()

        assert client.cache.get(f"rooms_{PUBLIC_KEY}") is None


class TestClientPool:
    """Tests for the shared client pool."""

    @pytest.mark.asyncio
    async def test_reuses_idle_client(self):
        """A returned client should be handed out again."""
        from waitroom_core.http import ClientPool

        pool = ClientPool()

        async with pool.borrow() as first:
            pass
        async with pool.borrow() as second:
            pass

        assert first is second
        assert pool.created_count == 1
        assert pool.idle_count == 1
        await pool.aclose()

    @pytest.mark.asyncio
    async def test_concurrent_borrows_get_distinct_clients(self):
        """Clients in use should never be shared."""
        from waitroom_core.http import ClientPool

        pool = ClientPool()

        async with pool.borrow() as first:
            async with pool.borrow() as second:
                assert first is not second

        assert pool.idle_count == 2
        await pool.aclose()
        assert pool.idle_count == 0

    @pytest.mark.asyncio
    async def test_recycles_after_lifetime(self):
        """Clients older than the lifetime should be closed and replaced."""
        from waitroom_core.http import ClientPool

        now = [0.0]
        pool = ClientPool(lifetime=300, time_func=lambda: now[0])

        async with pool.borrow() as first:
            pass
        now[0] += 300
        async with pool.borrow() as second:
            pass

        assert first is not second
        assert first.is_closed
        assert pool.created_count == 2
        await pool.aclose()

    @pytest.mark.asyncio
    async def test_clients_carry_no_api_key(self, fake_api):
        """The API key should go on the request, never on the pooled client."""
        client = make_api_client(fake_api)

        await client.get_token("https://shop.test/")

        async with client.pool.borrow() as pooled:
            assert "x-api-key" not in pooled.headers

    def test_clients_are_bound_to_their_event_loop(self):
        """A client from a closed loop should never be handed to a new one."""
        from waitroom_core.http import ClientPool

        pool = ClientPool()

        async def borrow():
            async with pool.borrow() as client:
                return client

        first = asyncio.run(borrow())
        second = asyncio.run(borrow())

        assert first is not second
        assert pool.created_count == 2
        assert pool.idle_count == 1

    def test_api_client_survives_a_new_event_loop(self, fake_api):
        """Separate asyncio.run calls should each get a working client."""
        client = make_api_client(fake_api, room_cache_ttl=0)

        first = asyncio.run(client.get_room_config())
        second = asyncio.run(client.get_room_config())

        assert [r.slug for r in first] == [r.slug for r in second] == ["sale"]
        assert len(fake_api.requests) == 2
        assert client.pool.created_count == 2
