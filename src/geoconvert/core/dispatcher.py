"""
Dispatch of conversion requests to the background worker.

One worker (a process by default, a thread when configured) is started
once and torn down once per session. Every request carries an id; a
routing map of id -> future lets several requests be outstanding at the
same time, and each entry is removed after exactly one response.

A reader thread blocks on the connection and settles futures on their
event loop with ``call_soon_threadsafe``.
"""

import asyncio
import itertools
import logging
import multiprocessing
import threading
from typing import Any, Dict, Optional, Union

from geoconvert.core.config import settings
from geoconvert.core.engine import ConversionEngine
from geoconvert.core.errors import ConfigurationError, ConversionError, DispatcherClosedError
from geoconvert.core.metadata import parse_metadata
from geoconvert.core.worker import SHUTDOWN, serve
from geoconvert.models.metadata import DatasetMetadata

logger = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, memoryview]


def _settle(future: "asyncio.Future[Dict[str, Any]]", response: Optional[Dict[str, Any]],
            error: Optional[BaseException] = None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(response)


class ConversionDispatcher:
    """
    Request/response channel to the conversion worker.

    Example:
        >>> async with ConversionDispatcher(FionaEngine()) as dispatcher:
        ...     kml = await dispatcher.convert(data, "sample.geojson", "geojson", "kml", {})
    """

    def __init__(
        self,
        engine: ConversionEngine,
        mode: Optional[str] = None,
        start_method: Optional[str] = None,
        shutdown_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            engine: Engine run by the worker; must be picklable in process mode
            mode: "process" or "thread", defaults to ``settings.worker_mode``
            start_method: multiprocessing start method for process mode
            shutdown_timeout: Seconds to wait for the worker on close
        """
        self.engine = engine
        self.mode = mode or settings.worker_mode
        self.start_method = start_method or settings.worker_start_method
        self.shutdown_timeout = (
            settings.worker_shutdown_timeout if shutdown_timeout is None else shutdown_timeout
        )

        if self.mode not in ("process", "thread"):
            raise ConfigurationError(
                f"Unknown worker mode '{self.mode}'", config_key="worker_mode"
            )

        self._conn: Any = None
        self._worker: Any = None
        self._reader: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()
        self._pending: Dict[int, "asyncio.Future[Dict[str, Any]]"] = {}
        self._pending_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._started and not self._closed

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def start(self) -> None:
        """
        Start the worker and the response reader.

        Raises:
            DispatcherClosedError: If the dispatcher was already closed
        """
        if self._closed:
            raise DispatcherClosedError("Conversion worker has been shut down")
        if self._started:
            return

        if self.mode == "process":
            ctx = multiprocessing.get_context(self.start_method)
            parent_conn, child_conn = ctx.Pipe(duplex=True)
            self._worker = ctx.Process(
                target=serve,
                args=(child_conn, self.engine),
                name="geoconvert-worker",
                daemon=True,
            )
            self._worker.start()
            # The child owns its end now
            child_conn.close()
        else:
            parent_conn, child_conn = multiprocessing.Pipe(duplex=True)
            self._worker = threading.Thread(
                target=serve,
                args=(child_conn, self.engine),
                name="geoconvert-worker",
                daemon=True,
            )
            self._worker.start()

        self._conn = parent_conn
        self._reader = threading.Thread(
            target=self._read_responses, name="geoconvert-reader", daemon=True
        )
        self._reader.start()
        self._started = True
        logger.info(f"Conversion worker started ({self.mode} mode)")

    def close(self) -> None:
        """
        Shut the worker down and abandon outstanding requests.

        Safe to call more than once.
        """
        if not self._started or self._closed:
            self._closed = True
            return
        self._closed = True

        try:
            with self._send_lock:
                self._conn.send({"kind": SHUTDOWN})
        except (BrokenPipeError, OSError):
            logger.debug("Worker channel already closed during shutdown")

        self._worker.join(self.shutdown_timeout)
        if self._worker.is_alive() and self.mode == "process":
            logger.warning("Conversion worker did not stop in time; terminating it")
            self._worker.terminate()
            self._worker.join(self.shutdown_timeout)

        if self._reader is not None:
            self._reader.join(self.shutdown_timeout)
            if self._reader.is_alive():
                # The reader closes the connection once the busy worker answers
                logger.debug("Response reader still waiting on a busy worker")

        self._fail_pending(DispatcherClosedError("Conversion worker was shut down"))
        logger.info("Conversion worker stopped")

    async def aclose(self) -> None:
        await asyncio.to_thread(self.close)

    def __enter__(self) -> "ConversionDispatcher":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def __aenter__(self) -> "ConversionDispatcher":
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()

    # ------------------------------------------------------------------
    # Response routing
    # ------------------------------------------------------------------

    def _read_responses(self) -> None:
        try:
            self._route_responses()
        finally:
            # Only the reader closes the connection, so recv() is never cut short
            self._conn.close()
        self._fail_pending(DispatcherClosedError())

    def _route_responses(self) -> None:
        while True:
            try:
                response = self._conn.recv()
            except (EOFError, OSError):
                break

            request_id = response.get("id") if isinstance(response, dict) else None
            with self._pending_lock:
                future = self._pending.pop(request_id, None)
            if future is None:
                logger.warning(f"Dropping response for unknown request {request_id!r}")
                continue

            loop = future.get_loop()
            if not loop.is_closed():
                loop.call_soon_threadsafe(_settle, future, response)

    def _fail_pending(self, error: DispatcherClosedError) -> None:
        with self._pending_lock:
            abandoned = list(self._pending.values())
            self._pending.clear()

        if abandoned:
            logger.warning(f"Abandoning {len(abandoned)} outstanding request(s)")
        for future in abandoned:
            loop = future.get_loop()
            if not loop.is_closed():
                loop.call_soon_threadsafe(_settle, future, None, error)

    def _send(self, request: Dict[str, Any]) -> None:
        with self._send_lock:
            self._conn.send(request)

    async def _request(self, request: Dict[str, Any], data: Payload) -> Dict[str, Any]:
        if not self.is_running:
            raise DispatcherClosedError()

        request_id = next(self._ids)
        future: "asyncio.Future[Dict[str, Any]]" = asyncio.get_running_loop().create_future()
        with self._pending_lock:
            self._pending[request_id] = future

        request["id"] = request_id
        request["payload"] = bytes(data)
        try:
            await asyncio.to_thread(self._send, request)
        except (BrokenPipeError, OSError) as e:
            with self._pending_lock:
                self._pending.pop(request_id, None)
            raise DispatcherClosedError(f"Conversion worker is not reachable: {e}") from e
        finally:
            # The worker owns the bytes now
            request["payload"] = b""
            if isinstance(data, bytearray):
                data.clear()

        return await future

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def convert(
        self,
        data: Payload,
        name: str,
        input_format: str,
        output_format: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        """
        Convert one dataset in the worker.

        Args:
            data: Input bytes; a ``bytearray`` is emptied once handed off
            name: Dataset name
            input_format: Input format id
            output_format: Output format id
            options: Conversion options payload

        Returns:
            Converted bytes

        Raises:
            ConversionError: With the engine's message when conversion fails
            DispatcherClosedError: If the worker is not running
        """
        response = await self._request(
            {
                "kind": "convert",
                "name": name,
                "input_format": input_format,
                "output_format": output_format,
                "options": dict(options or {}),
            },
            data,
        )
        if not response.get("ok"):
            raise ConversionError(str(response.get("error") or "Unknown error"), dataset=name)
        return response["payload"]

    async def describe(
        self,
        data: Payload,
        name: str,
        input_format: str,
        source_crs: Optional[str] = None,
    ) -> DatasetMetadata:
        """
        Describe one dataset in the worker.

        Returns:
            Parsed metadata

        Raises:
            ConversionError: With the engine's message when describe fails
            MetadataParseError: If the metadata cannot be parsed
            DispatcherClosedError: If the worker is not running
        """
        response = await self._request(
            {
                "kind": "describe",
                "name": name,
                "input_format": input_format,
                "options": {"source_crs": source_crs or ""},
            },
            data,
        )
        if not response.get("ok"):
            raise ConversionError(str(response.get("error") or "Unknown error"), dataset=name)
        return parse_metadata(response["metadata"])
