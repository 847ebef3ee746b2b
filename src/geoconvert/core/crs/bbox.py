"""
Best-effort bounding box reprojection for previews.

The engine reprojects geometries authoritatively during conversion. A
preview needs WGS84 bounds before that, so the layer extent is densified
along its edges and each sample is transformed with pyproj. Densifying
matters because non-conformal projections bow straight edges outward and
the four corners alone would under-estimate the bounds.
"""

import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError as PyprojCRSError
from pyproj.exceptions import ProjError

from geoconvert.core.config import settings
from geoconvert.core.crs.resolver import ProjDefinitionClient, parse_epsg_code
from geoconvert.core.errors import CRSResolutionError, InvalidBboxError

logger = logging.getLogger(__name__)

TARGET_CRS = "EPSG:4326"


@dataclass(frozen=True)
class BboxReprojection:
    """
    Outcome of a bbox reprojection.

    Attributes:
        bbox: Bounds to display; the original bounds when not reprojected
        bbox_original: Input bounds, set whenever a transform was attempted
        reprojected: Whether ``bbox`` is in WGS84 after a transform
        failed: Whether a transform was attempted and failed
        debug_transform: Human-readable description of what happened
    """

    bbox: List[float]
    bbox_original: Optional[List[float]]
    reprojected: bool
    failed: bool
    debug_transform: str


def validate_bbox(bbox: Any) -> List[float]:
    """
    Check that ``bbox`` is ``[min_x, min_y, max_x, max_y]``.

    Raises:
        InvalidBboxError: If it is not four finite, ordered numbers
    """
    if not isinstance(bbox, (list, tuple)) or len(bbox) != 4:
        raise InvalidBboxError("Bounding box must contain exactly four numbers", bbox=bbox)

    for value in bbox:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidBboxError("Bounding box values must be numbers", bbox=bbox)
        if not math.isfinite(value):
            raise InvalidBboxError("Bounding box values must be finite", bbox=bbox)

    min_x, min_y, max_x, max_y = (float(v) for v in bbox)
    if min_x > max_x or min_y > max_y:
        raise InvalidBboxError("Bounding box minimums must not exceed maximums", bbox=bbox)

    return [min_x, min_y, max_x, max_y]


def sample_bbox_edges(bbox: Sequence[float], samples: int = 9) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample the four edges of a bbox at ``samples`` points each.

    Args:
        bbox: [min_x, min_y, max_x, max_y]
        samples: Points per edge, corners included

    Returns:
        Tuple of (x, y) arrays with ``4 * samples`` points
    """
    min_x, min_y, max_x, max_y = bbox
    along_x = np.linspace(min_x, max_x, samples)
    along_y = np.linspace(min_y, max_y, samples)

    xs = np.concatenate([
        along_x,                      # bottom
        along_x,                      # top
        np.full(samples, min_x),      # left
        np.full(samples, max_x),      # right
    ])
    ys = np.concatenate([
        np.full(samples, min_y),
        np.full(samples, max_y),
        along_y,
        along_y,
    ])
    return xs, ys


class BboxReprojector:
    """
    Reproject layer extents to WGS84 for display.

    EPSG codes are resolved to PROJ strings through the registry client
    with their own cache; if every endpoint fails the raw ``EPSG:<code>``
    is handed to pyproj, which can usually resolve it from its database.
    """

    def __init__(
        self,
        client: ProjDefinitionClient,
        samples_per_edge: Optional[int] = None,
    ) -> None:
        self.client = client
        self.samples_per_edge = samples_per_edge or settings.bbox_samples_per_edge
        self._definitions: Dict[str, str] = {}

    async def _definition_for(self, source: str) -> str:
        code = parse_epsg_code(source)
        if code is None:
            return source

        cached = self._definitions.get(code)
        if cached is not None:
            return cached

        try:
            definition = await self.client.fetch(code)
        except CRSResolutionError as e:
            logger.info(f"{e.message}; falling back to EPSG:{code}")
            definition = f"EPSG:{code}"
        self._definitions[code] = definition
        return definition

    async def reproject(self, bbox: Any, source_definition: Optional[str]) -> BboxReprojection:
        """
        Reproject ``bbox`` from ``source_definition`` to WGS84.

        Args:
            bbox: [min_x, min_y, max_x, max_y] in the source CRS
            source_definition: PROJ string, WKT or EPSG code of the source

        Returns:
            BboxReprojection describing the outcome

        Raises:
            InvalidBboxError: If ``bbox`` is malformed (before any lookup)
        """
        original = validate_bbox(bbox)
        source = (source_definition or "").strip()

        if not source:
            return BboxReprojection(
                bbox=original,
                bbox_original=None,
                reprojected=False,
                failed=False,
                debug_transform="Source CRS is empty, bbox shown as is",
            )

        definition = await self._definition_for(source)

        try:
            source_crs = CRS.from_user_input(definition)
            if source_crs.is_geographic:
                return BboxReprojection(
                    bbox=original,
                    bbox_original=None,
                    reprojected=False,
                    failed=False,
                    debug_transform=f"Already WGS84 or geographic ({source_crs.name})",
                )

            transformer = Transformer.from_crs(source_crs, TARGET_CRS, always_xy=True)
            xs, ys = sample_bbox_edges(original, self.samples_per_edge)
            lons, lats = transformer.transform(xs, ys)
            lons = np.asarray(lons)
            lats = np.asarray(lats)
            if not (np.all(np.isfinite(lons)) and np.all(np.isfinite(lats))):
                raise ProjError("transformed coordinates are not finite")
        except (PyprojCRSError, ProjError) as e:
            logger.warning(f"Bbox reprojection from {definition!r} failed: {e}")
            return BboxReprojection(
                bbox=original,
                bbox_original=original,
                reprojected=False,
                failed=True,
                debug_transform=f"Reprojection failed: {e}",
            )

        reprojected = [
            float(lons.min()),
            float(lats.min()),
            float(lons.max()),
            float(lats.max()),
        ]
        return BboxReprojection(
            bbox=reprojected,
            bbox_original=original,
            reprojected=True,
            failed=False,
            debug_transform=(
                f"Reprojected {source_crs.name} to {TARGET_CRS} "
                f"from {len(xs)} edge samples"
            ),
        )
