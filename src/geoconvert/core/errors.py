"""
Exception hierarchy for geoconvert.

Every exception raised on purpose by the orchestration layer derives from
``GeoConvertException``. Subclasses declare their error code, HTTP status
and default suggestions as class attributes; constructors only add the
structured details specific to each error.
"""

from typing import Any, Dict, List, Optional


def _compact(**values: Any) -> Dict[str, Any]:
    """Keep only the details that were actually provided."""
    return {key: value for key, value in values.items() if value is not None}


class GeoConvertException(Exception):
    """
    Base exception for all geoconvert-specific errors.

    Attributes:
        message: User-facing message
        error_code: Machine-readable identifier
        status_code: HTTP status used by the API
        details: Structured technical details
        suggestions: Steps the user can take
    """

    error_code: str = "GEOCONVERT_ERROR"
    status_code: int = 500
    default_suggestions: List[str] = []

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.details: Dict[str, Any] = dict(details or {})
        self.suggestions: List[str] = list(suggestions or self.default_suggestions)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used in API error bodies."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "suggestions": self.suggestions,
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code!r}, "
            f"message={self.message!r}, status_code={self.status_code})"
        )


class ValidationError(GeoConvertException):
    """Invalid user input (empty selection, unknown scope, bad options...)."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details={**(details or {}), **_compact(field=field)})


class UnsupportedFormatError(GeoConvertException):
    """A format id or file extension the registry cannot handle."""

    error_code = "UNSUPPORTED_FORMAT"
    status_code = 400
    default_suggestions = [
        "Check the list of supported formats",
        "Rename the file with the correct extension",
    ]

    def __init__(
        self,
        message: str,
        format_id: Optional[str] = None,
        filename: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            details={**(details or {}), **_compact(format_id=format_id, filename=filename)},
        )


class InvalidBboxError(GeoConvertException):
    """A bounding box that is not four finite, ordered numbers."""

    error_code = "INVALID_BBOX"
    status_code = 400
    default_suggestions = ["Provide a bbox as [min_x, min_y, max_x, max_y]"]

    def __init__(self, message: str, bbox: Any = None):
        super().__init__(
            message, details=_compact(bbox=None if bbox is None else repr(bbox))
        )


class ParseError(GeoConvertException):
    """A document returned by the engine could not be parsed."""

    error_code = "PARSE_ERROR"
    status_code = 422
    default_suggestions = ["Verify the input file is not corrupted"]


class MetadataParseError(ParseError):
    """Describe metadata that is not a JSON object even after sanitizing."""

    error_code = "METADATA_PARSE_ERROR"
    default_suggestions = [
        "Attribute values may contain unsupported characters",
        "Try converting the dataset without previewing it",
    ]


class CRSError(GeoConvertException):
    """A coordinate reference system could not be used."""

    error_code = "CRS_ERROR"
    status_code = 422
    default_suggestions = [
        "Verify the coordinate reference system is supported",
        "Check EPSG codes are valid",
    ]


class CRSResolutionError(CRSError):
    """Every CRS registry endpoint failed for an EPSG code."""

    error_code = "CRS_RESOLUTION_ERROR"
    default_suggestions = [
        "Check your network connection",
        "Paste the full PROJ definition instead of the EPSG code",
    ]

    def __init__(self, message: str, code: Optional[str] = None, attempts: int = 0):
        super().__init__(message, details={"attempts": attempts, **_compact(code=code)})
        self.code = code


class ConversionError(GeoConvertException):
    """
    The conversion engine reported a failure.

    The message is the engine's own text and ``str()`` returns it as is,
    so that the classifier sees exactly what the engine said.
    """

    error_code = "CONVERSION_ERROR"
    status_code = 422
    default_suggestions = ["Adjust the conversion options and run again"]

    def __init__(
        self,
        message: str,
        dataset: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details={**(details or {}), **_compact(dataset=dataset)})

    def __str__(self) -> str:
        return self.message


class ServiceUnavailableError(GeoConvertException):
    """A collaborator service is not available right now."""

    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_suggestions = ["Try again in a few moments"]

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message, details={**(details or {}), **_compact(service_name=service_name)}
        )


class DispatcherClosedError(ServiceUnavailableError):
    """A request was issued to, or abandoned by, a closed worker."""

    def __init__(self, message: str = "Conversion worker is not running"):
        super().__init__(message, service_name="conversion-worker")


class ConfigurationError(GeoConvertException):
    """Invalid settings detected at startup."""

    error_code = "CONFIGURATION_ERROR"
    default_suggestions = ["Check GEOCONVERT_* environment variables"]

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details={**(details or {}), **_compact(config_key=config_key)})
