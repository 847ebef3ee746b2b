"""
Pydantic model for conversion options.

The options record is fixed and validated once, at the orchestration
boundary; everything downstream receives a frozen instance or its plain
dictionary form (``to_payload``) for the worker channel.
"""

import math
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GeometryTypeFilter(str, Enum):
    """Geometry types that can be kept when filtering features."""

    POINT = "Point"
    LINESTRING = "LineString"
    POLYGON = "Polygon"
    MULTIPOINT = "MultiPoint"
    MULTILINESTRING = "MultiLineString"
    MULTIPOLYGON = "MultiPolygon"


class ConversionOptions(BaseModel):
    """
    Options applied to every dataset of a run.

    Attributes:
        source_crs: Override for the input CRS (PROJ string, WKT or EPSG:n)
        target_crs: CRS to reproject into; empty keeps the source CRS
        layer_name: Name of the output layer; empty keeps the input name
        geometry_type: Keep only features of this geometry type
        skip_failures: Skip features that fail instead of aborting
        make_valid: Repair invalid geometries before writing
        keep_z: Keep Z coordinates; they are dropped otherwise
        where_clause: OGR SQL attribute filter
        select_fields: Attribute fields to keep; empty keeps all
        simplify_tolerance: Simplification tolerance in source units, 0 disables
        explode_collections: Split multi-part geometries into single parts
        preserve_fid: Write the input feature id as an attribute
        geojson_precision: Decimal places for GeoJSON coordinates
        csv_geometry_mode: WKT column or X/Y columns for CSV output
    """

    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=True)

    source_crs: str = Field(default="", description="Source CRS override")
    target_crs: str = Field(default="", description="Target CRS")
    layer_name: str = Field(default="", description="Output layer name", max_length=255)
    geometry_type: Optional[GeometryTypeFilter] = Field(
        default=None, description="Geometry type filter"
    )
    skip_failures: bool = False
    make_valid: bool = False
    keep_z: bool = False
    where_clause: str = Field(default="", description="OGR SQL attribute filter")
    select_fields: List[str] = Field(default_factory=list, description="Fields to keep")
    simplify_tolerance: float = Field(default=0.0, ge=0.0)
    explode_collections: bool = True
    preserve_fid: bool = False
    geojson_precision: int = Field(default=7, ge=0, le=15)
    csv_geometry_mode: Literal["WKT", "XY"] = "WKT"

    @field_validator("source_crs", "target_crs", "layer_name", "where_clause")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("geometry_type", mode="before")
    @classmethod
    def empty_geometry_type(cls, v: Any) -> Any:
        # "" means "All geometry types"
        if v == "":
            return None
        return v

    @field_validator("select_fields", mode="before")
    @classmethod
    def split_fields(cls, v: Any) -> Any:
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("simplify_tolerance")
    @classmethod
    def finite_tolerance(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("simplify_tolerance must be a finite number")
        return v

    def to_payload(self) -> Dict[str, Any]:
        """Plain dictionary sent to the conversion worker."""
        return self.model_dump()
