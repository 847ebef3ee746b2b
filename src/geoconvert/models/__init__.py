"""
Data models and schemas.
"""

from .dataset import (
    BundleDataset,
    Dataset,
    GroupingResult,
    SingleDataset,
    UploadedFile,
)
from .errors import ErrorDetail, ErrorResponse
from .metadata import DatasetMetadata, FieldInfo
from .options import ConversionOptions, GeometryTypeFilter
from .report import (
    ConversionArtifact,
    ConversionOutcome,
    DatasetFailure,
    Failure,
    RunReport,
    Success,
)

__all__ = [
    # Datasets
    "BundleDataset",
    "Dataset",
    "GroupingResult",
    "SingleDataset",
    "UploadedFile",
    # Errors
    "ErrorDetail",
    "ErrorResponse",
    # Metadata
    "DatasetMetadata",
    "FieldInfo",
    # Options
    "ConversionOptions",
    "GeometryTypeFilter",
    # Reports
    "ConversionArtifact",
    "ConversionOutcome",
    "DatasetFailure",
    "Failure",
    "RunReport",
    "Success",
]
