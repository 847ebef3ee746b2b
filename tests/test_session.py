"""
Tests for the conversion session orchestrator.
"""

import json
from typing import Any, Dict, List

import httpx
import pytest
import respx

from geoconvert.core.config import Settings
from geoconvert.core.errors import UnsupportedFormatError, ValidationError
from geoconvert.core.session import ConversionSession
from geoconvert.models.dataset import UploadedFile

WEB_MERCATOR = (
    "+proj=merc +a=6378137 +b=6378137 +lat_ts=0 +lon_0=0 +x_0=0 +y_0=0 "
    "+k=1 +units=m +nadgrids=@null +wktext +no_defs"
)


# Fixtures


class CountingEngine:
    """Engine that records describe calls and reports a mercator extent."""

    def __init__(self) -> None:
        self.described: List[str] = []

    def convert(
        self,
        data: bytes,
        name: str,
        input_format: str,
        output_format: str,
        options: Dict[str, Any],
    ) -> bytes:
        return data

    def describe(self, data: bytes, name: str, input_format: str, options: Dict[str, Any]) -> str:
        self.described.append(name)
        return json.dumps(
            {
                "layers": ["layer"],
                "featureCount": 1,
                "geometryType": "Point",
                "crs": options.get("source_crs") or WEB_MERCATOR,
                "bbox": [0.0, 0.0, 1113194.9079327357, 1118889.9748579594],
            }
        )


@pytest.fixture
def engine() -> CountingEngine:
    return CountingEngine()


@pytest.fixture
def config() -> Settings:
    return Settings(worker_mode="thread", worker_shutdown_timeout=2)


def uploads(*names: str) -> List[UploadedFile]:
    return [UploadedFile.from_bytes(n, n.encode(), last_modified=1.0) for n in names]


@pytest.mark.asyncio
class TestConversionSession:
    """Tests for ConversionSession."""

    async def test_select_files_groups(self, engine, config) -> None:
        async with ConversionSession(engine=engine, config=config) as session:
            grouping = session.select_files(uploads("roads.shp", "roads.dbf", "a.kml"))

            assert len(grouping) == 2
            assert [d.name for d in session.datasets] == ["roads", "a.kml"]
            assert session.find_dataset("a.kml").format_id == "kml"
            with pytest.raises(ValidationError):
                session.find_dataset("missing")

    async def test_preview_reprojects_and_caches(self, engine, config) -> None:
        """Test a repeated preview is served from cache without a worker request."""
        async with ConversionSession(engine=engine, config=config) as session:
            session.select_files(uploads("points.geojson"))
            dataset = session.datasets[0]

            first = await session.preview(dataset)
            second = await session.preview(dataset)

        assert first is second
        assert engine.described == ["points.geojson"]
        assert first.bbox_reprojected
        assert first.bbox == pytest.approx([0.0, 0.0, 10.0, 10.0], abs=1e-6)
        assert first.bbox_original == [0.0, 0.0, 1113194.9079327357, 1118889.9748579594]

    async def test_source_crs_override_changes_cache_key(self, engine, config) -> None:
        """Test a different source CRS triggers a new describe."""
        async with ConversionSession(engine=engine, config=config) as session:
            session.select_files(uploads("points.geojson"))
            dataset = session.datasets[0]

            await session.preview(dataset)
            geographic = await session.preview(dataset, source_crs="+proj=longlat +datum=WGS84")

        assert len(engine.described) == 2
        assert not geographic.bbox_reprojected
        assert geographic.debug_transform.startswith("Already WGS84")

    async def test_reselecting_clears_preview_cache(self, engine, config) -> None:
        async with ConversionSession(engine=engine, config=config) as session:
            session.select_files(uploads("points.geojson"))
            await session.preview(session.datasets[0])
            session.select_files(uploads("points.geojson"))
            await session.preview(session.datasets[0])

        assert len(engine.described) == 2

    async def test_preview_unknown_format(self, engine, config) -> None:
        async with ConversionSession(engine=engine, config=config) as session:
            session.select_files(uploads("notes.txt"))
            with pytest.raises(UnsupportedFormatError):
                await session.preview(session.datasets[0])

    @respx.mock
    async def test_resolve_crs_notifies(self, engine, config) -> None:
        """Test resolver notifications are collected on the session."""
        respx.get("https://spatialreference.org/ref/epsg/3857/proj4.txt").mock(
            return_value=httpx.Response(200, text=WEB_MERCATOR)
        )
        received = []

        async with ConversionSession(
            engine=engine, config=config, notifier=received.append
        ) as session:
            value = await session.resolve_crs("EPSG:3857", "source")

        assert value == WEB_MERCATOR
        assert session.resolver.custom["source"] == WEB_MERCATOR
        assert [n.level for n in session.notifications] == ["success"]
        assert received == session.notifications

    async def test_convert_selection(self, engine, config) -> None:
        artifacts = []
        async with ConversionSession(
            engine=engine, config=config, on_artifact=artifacts.append
        ) as session:
            session.select_files(uploads("a.geojson", "b.gpx"))
            report = await session.convert("kml")

        assert report.succeeded == ["a.geojson", "b.gpx"]
        assert [a.filename for a in artifacts] == ["a.kml", "b.kml"]

    async def test_convert_nothing_selected(self, engine, config) -> None:
        async with ConversionSession(engine=engine, config=config) as session:
            with pytest.raises(ValidationError):
                await session.convert("kml")
