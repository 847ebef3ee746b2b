"""
Parsing of describe metadata returned by the conversion worker.

Metadata is JSON text built from upstream attribute data, which may carry
raw control characters inside string values. Parsing tries the text as is
first and only then falls back to a sanitizing pass.
"""

import json
import logging
from typing import Any, Dict, Union

from pydantic import ValidationError as PydanticValidationError

from geoconvert.core.errors import ConversionError, MetadataParseError
from geoconvert.models.metadata import DatasetMetadata

logger = logging.getLogger(__name__)

# Control characters that have a short JSON escape
_CONTROL_ESCAPES = {
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def sanitize_json_text(text: str) -> str:
    """
    Escape or drop control characters inside JSON string literals.

    Backspace, tab, newline, form feed and carriage return become their
    standard escapes; every other character in 0x00-0x1F and 0x7F is
    removed. Characters outside string literals are left alone, so JSON
    whitespace between tokens survives.

    Args:
        text: JSON text that failed to parse

    Returns:
        Sanitized JSON text
    """
    out = []
    in_string = False
    escaped = False

    for ch in text:
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            continue

        if escaped:
            escaped = False
            out.append(ch)
        elif ch == "\\":
            escaped = True
            out.append(ch)
        elif ch == '"':
            in_string = False
            out.append(ch)
        elif ch in _CONTROL_ESCAPES:
            out.append(_CONTROL_ESCAPES[ch])
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            continue
        else:
            out.append(ch)

    return "".join(out)


def load_metadata_json(text: Union[str, bytes]) -> Dict[str, Any]:
    """
    Decode metadata JSON, retrying once on sanitized text.

    Raises:
        MetadataParseError: If the text is not a JSON object even after sanitizing
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")

    try:
        document = json.loads(text)
    except json.JSONDecodeError as first_error:
        logger.debug(f"Metadata is not valid JSON ({first_error}); sanitizing")
        try:
            document = json.loads(sanitize_json_text(text))
        except json.JSONDecodeError as e:
            raise MetadataParseError(
                f"Failed to parse dataset metadata: {e}",
                details={"position": e.pos},
            ) from e

    if not isinstance(document, dict):
        raise MetadataParseError("Dataset metadata must be a JSON object")
    return document


def parse_metadata(text: Union[str, bytes]) -> DatasetMetadata:
    """
    Parse describe output into ``DatasetMetadata``.

    Args:
        text: JSON text from the worker

    Returns:
        Parsed metadata

    Raises:
        ConversionError: If the document reports an engine error
        MetadataParseError: If the text cannot be parsed
    """
    document = load_metadata_json(text)

    if "error" in document:
        raise ConversionError(str(document["error"]))

    try:
        return DatasetMetadata.model_validate(document)
    except PydanticValidationError as e:
        raise MetadataParseError(
            "Dataset metadata has an unexpected shape",
            details={"errors": e.errors(include_url=False)},
        ) from e
