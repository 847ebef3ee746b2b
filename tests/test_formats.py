"""
Tests for the format registry.
"""

import pytest

from geoconvert.core.errors import UnsupportedFormatError
from geoconvert.core.formats import SUPPORTED_FORMATS, FormatRegistry, registry


class TestFormatLookup:
    """Test lookups by id."""

    def test_get_known_format(self) -> None:
        """Test looking up a format by id."""
        geojson = registry.get("geojson")
        assert geojson.label == "GeoJSON"
        assert geojson.can_read and geojson.can_write
        assert geojson.download_extension == ".geojson"
        assert geojson.driver == "GeoJSON"

    def test_get_unknown_format(self) -> None:
        """Test unknown ids raise UnsupportedFormatError."""
        with pytest.raises(UnsupportedFormatError) as exc_info:
            registry.get("not-a-format")
        assert exc_info.value.details["format_id"] == "not-a-format"
        assert exc_info.value.status_code == 400

    def test_ids_are_unique(self) -> None:
        """Test every descriptor has its own id."""
        ids = [f.id for f in SUPPORTED_FORMATS]
        assert len(ids) == len(set(ids))

    def test_contains_and_iter(self) -> None:
        """Test membership and iteration."""
        assert "kml" in registry
        assert "nope" not in registry
        assert {f.id for f in registry} == {f.id for f in SUPPORTED_FORMATS}

    def test_readable_and_writable(self) -> None:
        """Test capability filters."""
        readable = {f.id for f in registry.readable()}
        writable = {f.id for f in registry.writable()}

        assert "topojson" in readable
        assert "topojson" not in writable
        assert "pgdump" in writable
        assert "pgdump" not in readable

    def test_require_writable_rejects_read_only(self) -> None:
        """Test read-only formats cannot be used as output."""
        with pytest.raises(UnsupportedFormatError, match="input format"):
            registry.require_writable("topojson")

    def test_require_readable_rejects_write_only(self) -> None:
        """Test write-only formats cannot be used as input."""
        with pytest.raises(UnsupportedFormatError, match="output format"):
            registry.require_readable("pgdump")

    def test_download_name(self) -> None:
        """Test artifact naming."""
        assert registry.download_name("roads", "kml") == "roads.kml"
        assert registry.download_name("roads", "shapefile") == "roads.zip"
        assert registry.download_name("parcels", "mapinfo_tab") == "parcels.zip"

    def test_to_dict(self) -> None:
        """Test listing representation."""
        data = registry.get("geojson").to_dict()
        assert data["id"] == "geojson"
        assert data["extensions"] == ["geojson", "json"]
        assert "driver" not in data


class TestExtensionDetection:
    """Test filename based format detection."""

    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("sample.geojson", "geojson"),
            ("SAMPLE.GEOJSON", "geojson"),
            ("data.json", "geojson"),
            ("tracks.gpx", "gpx"),
            ("roads.shp", "shapefile"),
            ("roads.zip", "shapefile"),
            ("roads.shp.zip", "shapefile"),
            ("table.tab", "mapinfo_tab"),
            ("table.mid", "mapinfo_mif"),
            ("chart.000", "s57"),
            ("label.pds4.xml", "pds4"),
            ("points.csv", "csv"),
        ],
    )
    def test_detect(self, filename: str, expected: str) -> None:
        """Test detection of known extensions."""
        assert registry.detect(filename) == expected

    def test_detect_unknown(self) -> None:
        """Test unknown extensions detect as None."""
        assert registry.detect("notes.txt") is None
        assert registry.detect("no_extension") is None

    def test_extension_alone_is_not_a_match(self) -> None:
        """Test a bare '.kml' has no base name and does not match."""
        assert registry.detect(".kml") is None

    def test_longest_extension_wins(self) -> None:
        """Test '.shp.xml' is a shapefile companion, not an anchor."""
        matched = registry.match("roads.shp.xml")

        assert matched is not None
        assert matched.extension == "shp.xml"
        assert matched.bundle_kind is not None
        assert matched.bundle_kind.anchor == "shp"
        assert matched.strip("roads.shp.xml") == "roads"

    def test_plain_format_has_no_bundle_kind(self) -> None:
        """Test self-contained formats carry no bundle kind."""
        matched = registry.match("roads.zip")
        assert matched is not None
        assert matched.bundle_kind is None

    def test_bundle_kind_for_companion(self) -> None:
        kind = registry.bundle_kind_for("Parcels.MID")

        assert kind is not None
        assert kind.format_id == "mapinfo_mif"
        assert kind.anchor == "mif"
        assert registry.bundle_kind_for("roads.geojson") is None
        assert registry.bundle_kind_for("notes.txt") is None

    def test_custom_registry(self) -> None:
        """Test a registry built from a subset of formats."""
        subset = FormatRegistry(
            formats=[f for f in SUPPORTED_FORMATS if f.id == "kml"], bundle_kinds=()
        )
        assert subset.detect("a.kml") == "kml"
        assert subset.detect("a.geojson") is None
        assert subset.bundle_kind("shapefile") is None
