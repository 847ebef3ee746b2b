"""
Conversion session: the orchestrator that owns all per-session state.

A session holds the current file selection and its datasets, the CRS
resolver and its cache, the bbox reprojector, the preview cache and the
dispatcher with its worker. Nothing here is process-wide; two sessions
never share caches.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from geoconvert.core.archive import BundlePackager
from geoconvert.core.config import Settings, settings as default_settings
from geoconvert.core.crs.bbox import BboxReprojector
from geoconvert.core.crs.resolver import (
    CrsResolver,
    Notification,
    Notifier,
    ProjDefinitionClient,
)
from geoconvert.core.dispatcher import ConversionDispatcher
from geoconvert.core.engine import ConversionEngine, FionaEngine
from geoconvert.core.errors import UnsupportedFormatError, ValidationError
from geoconvert.core.formats import FormatRegistry, registry as default_registry
from geoconvert.core.grouping import DatasetGrouper
from geoconvert.core.logging_config import LogContext
from geoconvert.core.preview import PreviewCache, preview_fingerprint
from geoconvert.core.runner import ArtifactCallback, ConversionRunner
from geoconvert.models.dataset import BundleDataset, Dataset, GroupingResult, UploadedFile
from geoconvert.models.metadata import DatasetMetadata
from geoconvert.models.options import ConversionOptions
from geoconvert.models.report import RunReport
from geoconvert.utils.logging import PerformanceTimer

logger = logging.getLogger(__name__)


class ConversionSession:
    """
    One user's conversion session.

    Example:
        >>> async with ConversionSession() as session:
        ...     session.select_files([UploadedFile.from_path("roads.geojson")])
        ...     report = await session.convert("kml")
    """

    def __init__(
        self,
        engine: Optional[ConversionEngine] = None,
        config: Optional[Settings] = None,
        registry: Optional[FormatRegistry] = None,
        dispatcher: Optional[ConversionDispatcher] = None,
        proj_client: Optional[ProjDefinitionClient] = None,
        notifier: Optional[Notifier] = None,
        on_artifact: Optional[ArtifactCallback] = None,
    ) -> None:
        """
        Initialize session.

        Args:
            engine: Engine for the worker, defaults to ``FionaEngine``
            config: Settings, defaults to the module-level settings
            registry: Format registry
            dispatcher: Pre-built dispatcher (its engine wins over ``engine``)
            proj_client: CRS registry client shared by resolver and reprojector
            notifier: Receives user-facing notifications
            on_artifact: Receives each converted artifact as it is produced
        """
        self.config = config or default_settings
        self.registry = registry or default_registry
        self.notifier = notifier
        self.notifications: List[Notification] = []

        self.grouper = DatasetGrouper(self.registry)
        self.proj_client = proj_client or ProjDefinitionClient(
            endpoints=self.config.crs_endpoints, timeout=self.config.http_timeout
        )
        self.resolver = CrsResolver(self.proj_client, notifier=self._notify)
        self.reprojector = BboxReprojector(
            self.proj_client, samples_per_edge=self.config.bbox_samples_per_edge
        )
        self.preview_cache = PreviewCache(self.config.preview_cache_max_entries)
        self.dispatcher = dispatcher or ConversionDispatcher(
            engine or FionaEngine(self.registry),
            mode=self.config.worker_mode,
            start_method=self.config.worker_start_method,
            shutdown_timeout=self.config.worker_shutdown_timeout,
        )
        self.runner = ConversionRunner(
            self.dispatcher,
            registry=self.registry,
            packager=BundlePackager(),
            on_artifact=on_artifact,
        )

        self.files: List[UploadedFile] = []
        self.grouping = GroupingResult()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.dispatcher.start()

    async def close(self) -> None:
        """Stop the worker and release the HTTP client."""
        await self.dispatcher.aclose()
        await self.proj_client.close()

    async def __aenter__(self) -> "ConversionSession":
        """Async context manager entry."""
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    def _notify(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self.notifier is not None:
            self.notifier(notification)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def datasets(self) -> List[Dataset]:
        return self.grouping.datasets

    def select_files(self, files: Sequence[UploadedFile]) -> GroupingResult:
        """
        Replace the file selection and regroup it.

        Cached previews belong to the old selection and are dropped; the
        CRS cache is kept for the whole session.
        """
        self.files = list(files)
        self.grouping = self.grouper.group(self.files)
        self.preview_cache.clear()
        logger.info(
            f"Selected {len(self.files)} file(s) forming {len(self.grouping)} dataset(s)"
        )
        return self.grouping

    def find_dataset(self, name: str) -> Dataset:
        """
        Look up a dataset of the current selection by name.

        Raises:
            ValidationError: If no dataset has that name
        """
        for dataset in self.grouping.datasets:
            if dataset.name == name:
                return dataset
        raise ValidationError(f"No dataset named '{name}' in the selection", field="dataset")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def resolve_crs(self, raw: str, scope: str) -> str:
        """Resolve an ``EPSG:<code>`` input for the given scope."""
        return await self.resolver.resolve(raw, scope)

    async def lookup_crs(self, raw: str) -> str:
        """Resolve an ``EPSG:<code>`` input through the cache, outside any scope."""
        return await self.resolver.lookup(raw)

    async def preview(self, dataset: Dataset, source_crs: Optional[str] = None) -> DatasetMetadata:
        """
        Describe a dataset and reproject its extent for display.

        Results are cached by fingerprint; a second preview of the same
        files with the same format and source CRS makes no worker request.

        Args:
            dataset: Dataset of the current selection
            source_crs: Source CRS override, as entered by the user

        Returns:
            DatasetMetadata with ``bbox`` in WGS84 when reprojection succeeded

        Raises:
            UnsupportedFormatError: If the dataset format cannot be read
            ConversionError: If the engine cannot describe the dataset
            MetadataParseError: If the engine output cannot be parsed
        """
        format_id = dataset.format_id
        if format_id is None:
            raise UnsupportedFormatError(
                f"Unsupported file extension: {dataset.name}", filename=dataset.name
            )
        self.registry.require_readable(format_id)

        effective_crs = (source_crs or "").strip()
        members = dataset.members
        fingerprint = preview_fingerprint(members, format_id, effective_crs)
        cached = self.preview_cache.get(fingerprint)
        if cached is not None:
            logger.debug(f"Preview cache hit for {dataset.name}")
            return cached

        with LogContext(dataset=dataset.name), PerformanceTimer(f"Preview of {dataset.name}"):
            if isinstance(dataset, BundleDataset):
                data = self.runner.packager.package(dataset)
            else:
                data = dataset.file.read_bytes()

            metadata = await self.dispatcher.describe(
                bytearray(data), dataset.name, format_id, effective_crs
            )

            if metadata.bbox is not None:
                outcome = await self.reprojector.reproject(
                    metadata.bbox, effective_crs or metadata.crs
                )
                metadata = metadata.model_copy(
                    update={
                        "bbox": outcome.bbox,
                        "bbox_original": outcome.bbox_original,
                        "bbox_reprojected": outcome.reprojected,
                        "debug_transform": outcome.debug_transform,
                    }
                )

        self.preview_cache.put(fingerprint, metadata)
        return metadata

    async def convert(
        self,
        output_format: str,
        options: Union[ConversionOptions, Dict[str, Any], None] = None,
        datasets: Optional[Sequence[Dataset]] = None,
    ) -> RunReport:
        """
        Convert the current selection (or the given datasets).

        Raises:
            ValidationError: If there is nothing to convert
        """
        targets = list(datasets) if datasets is not None else self.grouping.datasets
        if not targets:
            raise ValidationError("No files selected for conversion", field="files")
        return await self.runner.run(targets, output_format, options)
