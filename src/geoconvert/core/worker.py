"""
Background side of the conversion message protocol.

The worker receives request dictionaries over a ``multiprocessing``
connection and answers each with exactly one response carrying the same
request id:

    {"id", "kind": "convert", "payload", "name", "input_format",
     "output_format", "options"}  ->  {"id", "ok": True, "payload"}
    {"id", "kind": "describe", "payload", "name", "input_format",
     "options": {"source_crs"}}   ->  {"id", "ok": True, "metadata"}
    any failure                   ->  {"id", "ok": False, "error"}
    {"kind": "shutdown"} ends the loop.
"""

import logging
from typing import Any, Dict

from geoconvert.core.engine import ConversionEngine
from geoconvert.core.errors import GeoConvertException

logger = logging.getLogger(__name__)

SHUTDOWN = "shutdown"


def format_engine_error(exc: BaseException) -> str:
    """Render an engine exception as the message sent back to the caller."""
    text = exc.message if isinstance(exc, GeoConvertException) else str(exc)
    name = type(exc).__name__
    if text.startswith(f"{name}:"):
        return text
    return f"{name}: {text}" if text else name


def handle_request(engine: ConversionEngine, request: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute one request against ``engine``.

    Args:
        engine: Conversion engine
        request: Request dictionary

    Returns:
        Response dictionary; engine exceptions become ``ok: False`` responses
    """
    request_id = request.get("id")
    kind = request.get("kind")

    try:
        if kind == "convert":
            data = engine.convert(
                bytes(request["payload"]),
                request["name"],
                request["input_format"],
                request["output_format"],
                request.get("options") or {},
            )
            return {"id": request_id, "ok": True, "payload": data}

        if kind == "describe":
            metadata = engine.describe(
                bytes(request["payload"]),
                request["name"],
                request["input_format"],
                request.get("options") or {},
            )
            return {"id": request_id, "ok": True, "metadata": metadata}

        return {"id": request_id, "ok": False, "error": f"Unknown request kind '{kind}'"}

    except Exception as e:
        # Any engine failure is reported to the caller; the worker keeps serving
        logger.debug(f"Request {request_id} ({kind}) failed: {e}", exc_info=True)
        return {"id": request_id, "ok": False, "error": format_engine_error(e)}


def serve(conn: Any, engine: ConversionEngine) -> None:
    """
    Serve requests from ``conn`` until shutdown or the channel closes.

    Args:
        conn: multiprocessing Connection end owned by the worker
        engine: Conversion engine executing the requests
    """
    logger.info(f"Conversion worker started with {type(engine).__name__}")
    try:
        while True:
            try:
                request = conn.recv()
            except (EOFError, OSError):
                logger.info("Conversion worker channel closed")
                break

            if request.get("kind") == SHUTDOWN:
                break

            response = handle_request(engine, request)
            try:
                conn.send(response)
            except (BrokenPipeError, OSError):
                logger.info("Conversion worker channel closed")
                break
    finally:
        conn.close()
        logger.info("Conversion worker stopped")
