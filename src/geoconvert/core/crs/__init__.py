"""
Coordinate Reference System (CRS) handling.

This module provides:
- EPSG code resolution against remote registries with fallback
- A session-scoped resolver with caching and in-flight de-duplication
- Bounding box reprojection to WGS84 for previews
"""

from geoconvert.core.crs.bbox import (
    BboxReprojection,
    BboxReprojector,
    sample_bbox_edges,
    validate_bbox,
)
from geoconvert.core.crs.resolver import (
    EPSG_CODE_PATTERN,
    CrsResolver,
    Notification,
    Notifier,
    ProjDefinitionClient,
    parse_epsg_code,
)

__all__ = [
    # Resolver
    "EPSG_CODE_PATTERN",
    "CrsResolver",
    "Notification",
    "Notifier",
    "ProjDefinitionClient",
    "parse_epsg_code",
    # Bbox
    "BboxReprojection",
    "BboxReprojector",
    "sample_bbox_edges",
    "validate_bbox",
]
