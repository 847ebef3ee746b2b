"""
Data models for dataset preview metadata.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldInfo(BaseModel):
    """One attribute field of a layer."""

    name: str
    type: str = "str"


class DatasetMetadata(BaseModel):
    """
    Summary of a dataset produced by the engine's describe call.

    ``bbox`` is what a map preview should display: reprojected to WGS84 when
    that succeeded, otherwise the layer's own extent. ``bbox_original`` keeps
    the untouched extent whenever a reprojection was attempted.

    Attributes:
        bbox: [min_x, min_y, max_x, max_y]
        bbox_original: Extent in the source CRS, when reprojection was attempted
        bbox_reprojected: Whether ``bbox`` is a reprojected extent
        debug_transform: Human-readable outcome of the bbox reprojection
        crs: Effective source CRS definition
        feature_count: Number of features in the first layer
        geometry_type: Geometry type of the first layer
        layers: Layer names in the dataset
        properties: Attribute fields of the first layer
    """

    model_config = ConfigDict(populate_by_name=True)

    bbox: Optional[List[float]] = None
    bbox_original: Optional[List[float]] = Field(default=None, alias="bboxOriginal")
    bbox_reprojected: bool = Field(default=False, alias="bboxReprojected")
    debug_transform: str = Field(default="", alias="debugTransform")
    crs: str = ""
    feature_count: Optional[int] = Field(default=None, alias="featureCount")
    geometry_type: Optional[str] = Field(default=None, alias="geometryType")
    layers: List[str] = Field(default_factory=list)
    properties: List[FieldInfo] = Field(default_factory=list)

    @property
    def reprojection_failed(self) -> bool:
        """True when a reprojection was attempted and the original is shown."""
        return (
            not self.bbox_reprojected
            and self.bbox_original is not None
            and bool(self.debug_transform)
            and "Already WGS84" not in self.debug_transform
            and "Source CRS is empty" not in self.debug_transform
        )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
