"""
Tests for the fiona-backed conversion engine.

These tests run GDAL through fiona on small in-memory datasets.
"""

import io
import json
import zipfile

import pytest
from fiona.errors import DriverError
from pyproj import Transformer

from geoconvert.core.engine import FionaEngine
from geoconvert.core.errors import ConversionError, UnsupportedFormatError

SAMPLE_GEOJSON = json.dumps(
    {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"name": "Sample Point", "population": 1200},
                "geometry": {"type": "Point", "coordinates": [2.3522, 48.8566]},
            }
        ],
    }
).encode()

MIXED_GEOJSON = json.dumps(
    {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"name": "a", "population": 10},
                "geometry": {"type": "Point", "coordinates": [0, 0]},
            },
            {
                "type": "Feature",
                "properties": {"name": "b", "population": 5000},
                "geometry": {"type": "Point", "coordinates": [1, 1]},
            },
            {
                "type": "Feature",
                "properties": {"name": "c", "population": 20},
                "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]},
            },
        ],
    }
).encode()

SAMPLE_KML = b"""<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <Placemark>
      <name>Sample Point</name>
      <Point><coordinates>2.3522,48.8566,0</coordinates></Point>
    </Placemark>
  </Document>
</kml>
"""


# Fixtures


@pytest.fixture
def engine() -> FionaEngine:
    return FionaEngine()


class TestConvert:
    """Conversion scenarios."""

    def test_geojson_to_kml(self, engine: FionaEngine) -> None:
        """Test a GeoJSON point becomes a KML document."""
        output = engine.convert(SAMPLE_GEOJSON, "sample.geojson", "geojson", "kml", {})

        text = output.decode("utf-8")
        assert text.startswith("<?xml")
        assert "<kml" in text
        assert "Sample Point" in text

    def test_kml_to_geojson(self, engine: FionaEngine) -> None:
        """Test a KML placemark becomes a GeoJSON feature collection."""
        output = engine.convert(SAMPLE_KML, "sample.kml", "kml", "geojson", {})

        document = json.loads(output)
        assert document["type"] == "FeatureCollection"
        assert len(document["features"]) > 0

    def test_geojson_to_shapefile_is_zipped(self, engine: FionaEngine) -> None:
        """Test multi-file output comes back as one archive named after the input."""
        output = engine.convert(SAMPLE_GEOJSON, "sample.geojson", "geojson", "shapefile", {})

        with zipfile.ZipFile(io.BytesIO(output)) as archive:
            names = set(archive.namelist())
        assert {"sample.shp", "sample.shx", "sample.dbf"} <= names

    def test_shapefile_bundle_round_trip(self, engine: FionaEngine) -> None:
        """Test a zipped shapefile bundle is read through its anchor."""
        shapefile = engine.convert(SAMPLE_GEOJSON, "sample.geojson", "geojson", "shapefile", {})

        output = engine.convert(shapefile, "sample", "shapefile", "geojson", {})

        document = json.loads(output)
        assert document["features"][0]["properties"]["name"] == "Sample Point"

    def test_where_clause_and_select_fields(self, engine: FionaEngine) -> None:
        options = {"where_clause": "population > 1000", "select_fields": ["name"]}

        output = engine.convert(MIXED_GEOJSON, "mixed.geojson", "geojson", "geojson", options)

        features = json.loads(output)["features"]
        assert [f["properties"] for f in features] == [{"name": "b"}]

    def test_geometry_type_filter(self, engine: FionaEngine) -> None:
        options = {"geometry_type": "LineString"}

        output = engine.convert(MIXED_GEOJSON, "mixed.geojson", "geojson", "geojson", options)

        features = json.loads(output)["features"]
        assert [f["geometry"]["type"] for f in features] == ["LineString"]

    def test_reprojection(self, engine: FionaEngine) -> None:
        """Test the target CRS is applied to coordinates."""
        options = {"target_crs": "EPSG:3857"}

        output = engine.convert(SAMPLE_GEOJSON, "sample.geojson", "geojson", "geojson", options)

        x, y = json.loads(output)["features"][0]["geometry"]["coordinates"][:2]
        expected_x, expected_y = Transformer.from_crs(
            "EPSG:4326", "EPSG:3857", always_xy=True
        ).transform(2.3522, 48.8566)
        assert x == pytest.approx(expected_x, abs=1.0)
        assert y == pytest.approx(expected_y, abs=1.0)

    def test_missing_field(self, engine: FionaEngine) -> None:
        with pytest.raises(ConversionError, match="Field not found"):
            engine.convert(
                SAMPLE_GEOJSON, "sample.geojson", "geojson", "kml", {"select_fields": ["nope"]}
            )

    def test_empty_result(self, engine: FionaEngine) -> None:
        with pytest.raises(ConversionError, match="No features"):
            engine.convert(
                SAMPLE_GEOJSON,
                "sample.geojson",
                "geojson",
                "kml",
                {"geometry_type": "Polygon"},
            )

    def test_unreadable_input(self, engine: FionaEngine) -> None:
        with pytest.raises(ConversionError, match="Unable to open"):
            engine.convert(b"definitely not geojson", "bad.geojson", "geojson", "kml", {})

    def test_archive_without_anchor(self, engine: FionaEngine) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("roads.dbf", b"")

        with pytest.raises(ConversionError, match="archive contains no .shp file"):
            engine.convert(buffer.getvalue(), "roads", "shapefile", "geojson", {})

    def test_unwritable_output(self, engine: FionaEngine) -> None:
        with pytest.raises(UnsupportedFormatError):
            engine.convert(SAMPLE_GEOJSON, "sample.geojson", "geojson", "topojson", {})


class TestDescribe:
    """Describe scenarios."""

    def test_describe_geojson(self, engine: FionaEngine) -> None:
        metadata = json.loads(engine.describe(MIXED_GEOJSON, "mixed.geojson", "geojson", {}))

        assert metadata["featureCount"] == 3
        assert metadata["bbox"] == [0.0, 0.0, 1.0, 1.0]
        assert {p["name"] for p in metadata["properties"]} == {"name", "population"}
        assert metadata["crs"]

    def test_source_crs_override(self, engine: FionaEngine) -> None:
        metadata = json.loads(
            engine.describe(SAMPLE_GEOJSON, "sample.geojson", "geojson", {"source_crs": "EPSG:2154"})
        )
        assert metadata["crs"] == "EPSG:2154"

    def test_null_geometries_describe_without_bbox(self, engine: FionaEngine) -> None:
        """Test a layer with only null geometries still reports count and fields."""
        data = json.dumps(
            {
                "type": "FeatureCollection",
                "features": [
                    {"type": "Feature", "properties": {"name": "orphan"}, "geometry": None}
                ],
            }
        ).encode()

        metadata = json.loads(engine.describe(data, "orphans.geojson", "geojson", {}))

        assert metadata["featureCount"] == 1
        assert [p["name"] for p in metadata["properties"]] == ["name"]

    def test_bounds_failure_gives_no_bbox(self) -> None:
        class NoBounds:
            name = "orphans"

            @property
            def bounds(self):
                raise DriverError("Driver was not able to calculate bounds")

        assert FionaEngine._layer_bounds(NoBounds(), 1) is None
        assert FionaEngine._layer_bounds(NoBounds(), 0) is None
