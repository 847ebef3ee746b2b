"""
Resolution of EPSG codes to PROJ definitions.

A user may type ``EPSG:<code>`` where a full CRS definition is expected.
The code is looked up against an ordered list of public registries; each
failing endpoint falls through to the next. Resolved definitions are
cached by code for the lifetime of the session.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Set

import httpx

from geoconvert.core.config import settings
from geoconvert.core.errors import CRSResolutionError, ValidationError

logger = logging.getLogger(__name__)

EPSG_CODE_PATTERN = re.compile(r"^epsg:(\d{1,6})$", re.IGNORECASE)

PROJ_MARKER = "+proj"

SCOPES = ("source", "target")


def parse_epsg_code(raw: Optional[str]) -> Optional[str]:
    """
    Extract the numeric code from ``EPSG:<digits>`` input.

    Args:
        raw: User input, surrounding whitespace is ignored

    Returns:
        The code as a string, or None if the input is not an EPSG code
    """
    if not raw:
        return None
    match = EPSG_CODE_PATTERN.match(raw.strip())
    return match.group(1) if match else None


@dataclass(frozen=True)
class Notification:
    """A user-facing message raised by the orchestration layer."""

    level: str
    message: str


Notifier = Callable[[Notification], None]


class ProjDefinitionClient:
    """
    HTTP client for CRS registries serving PROJ strings by EPSG code.

    Endpoints are URL templates with a ``{code}`` placeholder, tried in
    order. A response counts only if it is 2xx and its body starts with
    ``+proj``.
    """

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            endpoints: URL templates, defaults to ``settings.crs_endpoints``
            timeout: Request timeout in seconds
            client: Existing AsyncClient to use (not closed by ``close``)
        """
        self.endpoints = tuple(endpoints or settings.crs_endpoints)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.http_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> "ProjDefinitionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self.client.aclose()

    async def fetch(self, code: str) -> str:
        """
        Fetch the PROJ definition for an EPSG code.

        Args:
            code: Numeric EPSG code

        Returns:
            PROJ definition string

        Raises:
            CRSResolutionError: If every endpoint failed
        """
        last_error = "Unable to fetch PROJ definition"
        attempts = 0

        for template in self.endpoints:
            url = template.format(code=code)
            attempts += 1
            try:
                response = await self.client.get(url)
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.debug(f"CRS endpoint {url} failed: {last_error}")
                continue

            if not response.is_success:
                last_error = f"HTTP {response.status_code}"
                logger.debug(f"CRS endpoint {url} returned {response.status_code}")
                continue

            text = response.text.strip()
            if not text.startswith(PROJ_MARKER):
                last_error = "Unexpected response format"
                logger.debug(f"CRS endpoint {url} returned an unexpected body")
                continue

            logger.info(f"Resolved EPSG:{code} via {url}")
            return text

        raise CRSResolutionError(
            f"Failed to resolve EPSG:{code}. {last_error}",
            code=code,
            attempts=attempts,
        )


class CrsResolver:
    """
    Session-scoped EPSG resolver with a definition cache.

    The cache is append-only for the session. Each scope ("source" or
    "target") has an in-flight flag; a call arriving while the same scope
    is resolving returns its input untouched.

    Attributes:
        cache: EPSG code -> PROJ definition
        custom: Scope -> last resolved definition
    """

    def __init__(
        self,
        client: ProjDefinitionClient,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.client = client
        self.notifier = notifier
        self.cache: Dict[str, str] = {}
        self.custom: Dict[str, str] = {}
        self._in_flight: Set[str] = set()

    def is_resolving(self, scope: str) -> bool:
        return scope in self._in_flight

    def _notify(self, level: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier(Notification(level=level, message=message))

    async def resolve(self, raw: str, scope: str) -> str:
        """
        Resolve ``raw`` if it is an EPSG code.

        Args:
            raw: CRS input as typed by the user
            scope: "source" or "target"

        Returns:
            The PROJ definition on success, otherwise ``raw`` unchanged

        Raises:
            ValidationError: If ``scope`` is not a known scope
        """
        if scope not in SCOPES:
            raise ValidationError(f"Unknown CRS scope '{scope}'", field="scope")

        code = parse_epsg_code(raw)
        if code is None:
            return raw

        if scope in self._in_flight:
            logger.debug(f"Skipping EPSG:{code}, {scope} CRS is already resolving")
            return raw

        self._in_flight.add(scope)
        try:
            from_cache = code in self.cache
            try:
                definition = await self._definition_for(code)
            except CRSResolutionError as e:
                logger.warning(e.message)
                self._notify("error", e.message)
                return raw

            self.custom[scope] = definition
            if not from_cache:
                self._notify("success", f"Resolved EPSG:{code} to PROJ string.")
            return definition
        finally:
            self._in_flight.discard(scope)

    async def _definition_for(self, code: str) -> str:
        definition = self.cache.get(code)
        if definition is None:
            definition = await self.client.fetch(code)
            self.cache[code] = definition
        return definition

    async def lookup(self, raw: str) -> str:
        """
        Resolve ``raw`` through the shared cache without touching any scope.

        Concurrent lookups never skip each other and nothing is written to
        ``custom`` or notified, so several independent callers can share
        one resolver.

        Returns:
            The PROJ definition on success, otherwise ``raw`` unchanged
        """
        code = parse_epsg_code(raw)
        if code is None:
            return raw
        try:
            return await self._definition_for(code)
        except CRSResolutionError as e:
            logger.warning(e.message)
            return raw
