"""
Tests for EPSG code resolution.

Tests cover:
- EPSG code parsing
- Endpoint fallback (HTTP errors, transport errors, implausible bodies)
- Session cache and notifications
- Per-scope in-flight guard
"""

import asyncio
from typing import List

import httpx
import pytest
import respx

from geoconvert.core.crs.resolver import (
    CrsResolver,
    Notification,
    ProjDefinitionClient,
    parse_epsg_code,
)
from geoconvert.core.errors import CRSResolutionError, ValidationError

SPATIALREFERENCE_URL = "https://spatialreference.org/ref/epsg/2154/proj4.txt"
EPSG_IO_URL = "https://epsg.io/2154.proj4"
LAMBERT_93 = (
    "+proj=lcc +lat_0=46.5 +lon_0=3 +lat_1=49 +lat_2=44 +x_0=700000 "
    "+y_0=6600000 +ellps=GRS80 +units=m +no_defs +type=crs"
)


# Fixtures


class RecordingNotifier:
    """Collect notifications."""

    def __init__(self) -> None:
        self.notifications: List[Notification] = []

    def __call__(self, notification: Notification) -> None:
        self.notifications.append(notification)


class BlockingClient:
    """Client whose fetch waits until released."""

    def __init__(self, definition: str) -> None:
        self.definition = definition
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch(self, code: str) -> str:
        self.calls += 1
        await self.release.wait()
        return self.definition


class PerCodeClient:
    """Client answering a distinct definition per code once released."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def fetch(self, code: str) -> str:
        self.calls += 1
        await self.release.wait()
        return f"+proj=code{code}"


# Parsing Tests


class TestParseEpsgCode:
    """Tests for parse_epsg_code."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("EPSG:2154", "2154"),
            ("epsg:4326", "4326"),
            ("  EpSg:3857  ", "3857"),
            ("EPSG:1", "1"),
            ("EPSG:123456", "123456"),
        ],
    )
    def test_valid_codes(self, raw: str, expected: str) -> None:
        """Test EPSG codes are recognized case-insensitively."""
        assert parse_epsg_code(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["", "EPSG:", "EPSG:1234567", "EPSG: 2154", "2154", "+proj=longlat", "ESRI:102100"],
    )
    def test_non_codes(self, raw: str) -> None:
        """Test anything else is not an EPSG code."""
        assert parse_epsg_code(raw) is None


# Client Tests


@pytest.mark.asyncio
class TestProjDefinitionClient:
    """Tests for endpoint fallback."""

    @respx.mock
    async def test_first_endpoint_success(self) -> None:
        """Test a plausible body from the first endpoint is returned stripped."""
        first = respx.get(SPATIALREFERENCE_URL).mock(
            return_value=httpx.Response(200, text=f"  {LAMBERT_93}\n")
        )
        second = respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(200, text=LAMBERT_93))

        async with ProjDefinitionClient() as client:
            definition = await client.fetch("2154")

        assert definition == LAMBERT_93
        assert first.call_count == 1
        assert second.call_count == 0

    @respx.mock
    async def test_falls_through_on_http_error(self) -> None:
        """Test a non-2xx response moves on to the next endpoint."""
        respx.get(SPATIALREFERENCE_URL).mock(return_value=httpx.Response(404))
        second = respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(200, text=LAMBERT_93))

        async with ProjDefinitionClient() as client:
            definition = await client.fetch("2154")

        assert definition == LAMBERT_93
        assert second.call_count == 1

    @respx.mock
    async def test_falls_through_on_transport_error(self) -> None:
        """Test a network failure moves on to the next endpoint."""
        respx.get(SPATIALREFERENCE_URL).mock(side_effect=httpx.ConnectError("offline"))
        respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(200, text=LAMBERT_93))

        async with ProjDefinitionClient() as client:
            assert await client.fetch("2154") == LAMBERT_93

    @respx.mock
    async def test_falls_through_on_implausible_body(self) -> None:
        """Test a body not starting with '+proj' is rejected."""
        respx.get(SPATIALREFERENCE_URL).mock(
            return_value=httpx.Response(200, text="<html>Not found</html>")
        )
        respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(200, text=LAMBERT_93))

        async with ProjDefinitionClient() as client:
            assert await client.fetch("2154") == LAMBERT_93

    @respx.mock
    async def test_all_endpoints_fail(self) -> None:
        """Test a resolution error when every endpoint fails."""
        respx.get(SPATIALREFERENCE_URL).mock(return_value=httpx.Response(500))
        respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(200, text="garbage"))

        async with ProjDefinitionClient() as client:
            with pytest.raises(CRSResolutionError) as exc_info:
                await client.fetch("2154")

        assert exc_info.value.code == "2154"
        assert exc_info.value.details["attempts"] == 2
        assert "Unexpected response format" in exc_info.value.message

    @respx.mock
    async def test_custom_endpoints(self) -> None:
        """Test endpoints are configurable templates."""
        route = respx.get("https://crs.example.test/9999").mock(
            return_value=httpx.Response(200, text="+proj=longlat +datum=WGS84")
        )

        async with ProjDefinitionClient(endpoints=["https://crs.example.test/{code}"]) as client:
            assert await client.fetch("9999") == "+proj=longlat +datum=WGS84"
        assert route.called


# Resolver Tests


@pytest.mark.asyncio
class TestCrsResolver:
    """Tests for the session-scoped resolver."""

    async def test_non_epsg_input_passes_through(self) -> None:
        """Test full definitions are returned untouched without requests."""
        async with ProjDefinitionClient() as client:
            resolver = CrsResolver(client)
            with respx.mock(assert_all_called=False) as router:
                value = await resolver.resolve("+proj=longlat +datum=WGS84", "source")
                assert len(router.calls) == 0

        assert value == "+proj=longlat +datum=WGS84"
        assert resolver.custom == {}

    @respx.mock
    async def test_resolve_writes_custom_and_notifies(self) -> None:
        """Test a network resolution fills the scope and fires a success notification."""
        respx.get(SPATIALREFERENCE_URL).mock(return_value=httpx.Response(200, text=LAMBERT_93))
        notifier = RecordingNotifier()

        async with ProjDefinitionClient() as client:
            resolver = CrsResolver(client, notifier=notifier)
            value = await resolver.resolve("EPSG:2154", "target")

        assert value == LAMBERT_93
        assert resolver.custom["target"] == LAMBERT_93
        assert resolver.cache["2154"] == LAMBERT_93
        assert notifier.notifications == [
            Notification(level="success", message="Resolved EPSG:2154 to PROJ string.")
        ]

    @respx.mock
    async def test_second_resolution_is_served_from_cache(self) -> None:
        """Test resolving a code twice is identical and the second call makes no request."""
        route = respx.get(SPATIALREFERENCE_URL).mock(
            return_value=httpx.Response(200, text=LAMBERT_93)
        )
        notifier = RecordingNotifier()

        async with ProjDefinitionClient() as client:
            resolver = CrsResolver(client, notifier=notifier)
            first = await resolver.resolve("EPSG:2154", "source")
            second = await resolver.resolve("epsg:2154", "target")

        assert first == second == LAMBERT_93
        assert route.call_count == 1
        assert resolver.custom == {"source": LAMBERT_93, "target": LAMBERT_93}
        # Only the network resolution notifies
        assert len(notifier.notifications) == 1

    @respx.mock
    async def test_failure_returns_input_and_notifies_error(self) -> None:
        """Test an unresolvable code leaves the input unchanged."""
        respx.get(SPATIALREFERENCE_URL).mock(return_value=httpx.Response(503))
        respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(404))
        notifier = RecordingNotifier()

        async with ProjDefinitionClient() as client:
            resolver = CrsResolver(client, notifier=notifier)
            value = await resolver.resolve("EPSG:2154", "source")

        assert value == "EPSG:2154"
        assert resolver.cache == {}
        assert "source" not in resolver.custom
        assert notifier.notifications[0].level == "error"
        assert "Failed to resolve EPSG:2154" in notifier.notifications[0].message

    async def test_overlapping_call_for_same_scope_is_a_noop(self) -> None:
        """Test the in-flight guard prevents a second resolution for a scope."""
        client = BlockingClient(LAMBERT_93)
        resolver = CrsResolver(client)  # type: ignore[arg-type]

        first = asyncio.create_task(resolver.resolve("EPSG:2154", "source"))
        await asyncio.sleep(0)
        assert resolver.is_resolving("source")

        second = await resolver.resolve("EPSG:2154", "source")
        assert second == "EPSG:2154"

        client.release.set()
        assert await first == LAMBERT_93
        assert client.calls == 1
        assert not resolver.is_resolving("source")

    async def test_other_scope_is_not_blocked(self) -> None:
        """Test the guard is per scope."""
        client = BlockingClient(LAMBERT_93)
        resolver = CrsResolver(client)  # type: ignore[arg-type]

        first = asyncio.create_task(resolver.resolve("EPSG:2154", "source"))
        await asyncio.sleep(0)
        second = asyncio.create_task(resolver.resolve("EPSG:2154", "target"))
        await asyncio.sleep(0)

        client.release.set()
        assert await first == LAMBERT_93
        assert await second == LAMBERT_93
        assert client.calls == 2

    async def test_unknown_scope(self) -> None:
        """Test scopes are validated."""
        resolver = CrsResolver(BlockingClient(LAMBERT_93))  # type: ignore[arg-type]
        with pytest.raises(ValidationError):
            await resolver.resolve("EPSG:2154", "sideways")

    async def test_concurrent_lookups_are_all_resolved(self) -> None:
        """Test lookups for different codes overlap without skipping each other."""
        client = PerCodeClient()
        resolver = CrsResolver(client)  # type: ignore[arg-type]

        mercator = asyncio.create_task(resolver.lookup("EPSG:3857"))
        await asyncio.sleep(0)
        lambert = asyncio.create_task(resolver.lookup("EPSG:2154"))
        await asyncio.sleep(0)
        client.release.set()

        assert await mercator == "+proj=code3857"
        assert await lambert == "+proj=code2154"
        assert resolver.custom == {}
        assert resolver.cache == {"3857": "+proj=code3857", "2154": "+proj=code2154"}

    async def test_lookup_uses_cache_and_passes_through(self) -> None:
        client = PerCodeClient()
        client.release.set()
        resolver = CrsResolver(client)  # type: ignore[arg-type]

        assert await resolver.lookup("+proj=longlat") == "+proj=longlat"
        assert await resolver.lookup("EPSG:2154") == "+proj=code2154"
        assert await resolver.lookup("epsg:2154") == "+proj=code2154"
        assert client.calls == 1

    @respx.mock
    async def test_lookup_failure_returns_input(self) -> None:
        respx.get(SPATIALREFERENCE_URL).mock(return_value=httpx.Response(503))
        respx.get(EPSG_IO_URL).mock(return_value=httpx.Response(404))
        notifier = RecordingNotifier()

        async with ProjDefinitionClient() as client:
            resolver = CrsResolver(client, notifier=notifier)
            assert await resolver.lookup("EPSG:2154") == "EPSG:2154"

        assert resolver.cache == {}
        assert notifier.notifications == []
