"""
Sequential conversion of grouped datasets.

The runner drives each dataset through the dispatcher one at a time,
waiting for its outcome before dispatching the next, and collects the
outcomes into a run report. A failing dataset never stops the run.
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Union

from geoconvert.core.archive import BundlePackager
from geoconvert.core.classifier import ErrorClassifier
from geoconvert.core.dispatcher import ConversionDispatcher
from geoconvert.core.errors import GeoConvertException, UnsupportedFormatError
from geoconvert.core.formats import FormatRegistry, registry as default_registry
from geoconvert.core.logging_config import LogContext
from geoconvert.models.dataset import BundleDataset, Dataset
from geoconvert.models.options import ConversionOptions
from geoconvert.models.report import (
    ConversionArtifact,
    ConversionOutcome,
    DatasetFailure,
    Failure,
    RunReport,
    Success,
)
from geoconvert.utils.logging import PerformanceTimer

logger = logging.getLogger(__name__)

ArtifactCallback = Callable[[ConversionArtifact], None]


class ConversionRunner:
    """
    Top-level coordinator of a conversion run.

    Attributes:
        dispatcher: Channel to the conversion worker
        on_artifact: Called with each artifact as soon as it is produced
    """

    def __init__(
        self,
        dispatcher: ConversionDispatcher,
        registry: Optional[FormatRegistry] = None,
        classifier: Optional[ErrorClassifier] = None,
        packager: Optional[BundlePackager] = None,
        on_artifact: Optional[ArtifactCallback] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.registry = registry or default_registry
        self.classifier = classifier or ErrorClassifier()
        self.packager = packager or BundlePackager()
        self.on_artifact = on_artifact

    def base_name(self, dataset: Dataset) -> str:
        """Dataset name without its format extension."""
        if isinstance(dataset, BundleDataset):
            return dataset.base_name
        matched = self.registry.match(dataset.name)
        return matched.strip(dataset.name) if matched else dataset.base_name

    async def _convert_one(
        self,
        dataset: Dataset,
        output_format: str,
        options: Dict[str, Any],
    ) -> ConversionOutcome:
        try:
            input_format = dataset.format_id
            if input_format is None:
                raise UnsupportedFormatError(
                    f"Unsupported file extension: {dataset.name}", filename=dataset.name
                )
            self.registry.require_readable(input_format)

            if isinstance(dataset, BundleDataset):
                data = self.packager.package(dataset)
            else:
                data = dataset.file.read_bytes()

            result = await self.dispatcher.convert(
                bytearray(data), dataset.name, input_format, output_format, options
            )
        except GeoConvertException as e:
            return Failure(message=e.message)
        except OSError as e:
            return Failure(message=f"{type(e).__name__}: {e}")

        return Success(data=result)

    async def run(
        self,
        datasets: Sequence[Dataset],
        output_format: str,
        options: Union[ConversionOptions, Dict[str, Any], None] = None,
    ) -> RunReport:
        """
        Convert every dataset, in order.

        Args:
            datasets: Datasets from the grouper
            output_format: Output format id
            options: Conversion options, validated here when given as a dict

        Returns:
            RunReport with succeeded names, classified failures and artifacts

        Raises:
            UnsupportedFormatError: If ``output_format`` cannot be written
            pydantic.ValidationError: If ``options`` are invalid
        """
        if not isinstance(options, ConversionOptions):
            options = ConversionOptions.model_validate(options or {})
        descriptor = self.registry.require_writable(output_format)
        payload = options.to_payload()

        report = RunReport(output_format=output_format, total_datasets=len(datasets))
        logger.info(f"Converting {len(datasets)} dataset(s) to {descriptor.label}")

        for dataset in datasets:
            with LogContext(dataset=dataset.name):
                with PerformanceTimer(f"Conversion of {dataset.name}"):
                    outcome = await self._convert_one(dataset, output_format, payload)

                if isinstance(outcome, Success):
                    artifact = ConversionArtifact(
                        filename=self.registry.download_name(self.base_name(dataset), output_format),
                        data=outcome.data,
                        dataset=dataset.name,
                        format_id=output_format,
                    )
                    report.artifacts.append(artifact)
                    report.succeeded.append(dataset.name)
                    if self.on_artifact is not None:
                        self.on_artifact(artifact)
                    continue

                classification = self.classifier.classify_detailed(outcome.message)
                logger.warning(f"Conversion of {dataset.name} failed: {outcome.message}")
                report.failed.append(
                    DatasetFailure(
                        name=dataset.name,
                        message=classification.message,
                        raw_message=outcome.message,
                        category=classification.category,
                    )
                )

        logger.info(
            f"Run finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
        )
        return report
