"""
Grouping of uploaded files into convertible datasets.

Multi-file formats (shapefile, MapInfo TAB, MapInfo MIF/MID) are collected
by kind and case-insensitive base name. A candidate becomes a bundle only
when its anchor member is present; otherwise every member is kept as a
single dataset so that nothing silently drops out of a run.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from geoconvert.core.formats import FormatRegistry, registry as default_registry
from geoconvert.models.dataset import (
    BundleDataset,
    Dataset,
    GroupingResult,
    SingleDataset,
    UploadedFile,
)

logger = logging.getLogger(__name__)


class _Candidate:
    """Bundle members accumulated for one (kind, base name) key."""

    def __init__(self, format_id: str, anchor_extension: str, position: int) -> None:
        self.format_id = format_id
        self.anchor_extension = anchor_extension
        self.position = position
        self.anchor: Optional[Tuple[UploadedFile, str]] = None
        self.members: List[Tuple[UploadedFile, int]] = []

    def add(self, file: UploadedFile, extension: str, base_name: str, position: int) -> None:
        if extension == self.anchor_extension and self.anchor is None:
            self.anchor = (file, base_name)
        else:
            self.members.append((file, position))


class DatasetGrouper:
    """
    Partition a flat file selection into logical datasets.

    Example:
        >>> grouper = DatasetGrouper()
        >>> result = grouper.group(files)
        >>> for dataset in result.datasets:
        ...     print(dataset.name)
    """

    def __init__(self, registry: Optional[FormatRegistry] = None) -> None:
        self.registry = registry or default_registry

    def group(self, files: Sequence[UploadedFile]) -> GroupingResult:
        """
        Group files into bundles and singles.

        Args:
            files: Uploaded files in selection order

        Returns:
            GroupingResult with bundles keyed by kind and base name, singles,
            and every dataset in order of first appearance
        """
        candidates: Dict[Tuple[str, str], _Candidate] = {}
        placed: List[Tuple[int, Dataset]] = []

        for position, file in enumerate(files):
            matched = self.registry.match(file.name)

            if matched is None or matched.bundle_kind is None:
                # Unknown extensions and self-contained files (including
                # already-zipped shapefiles) convert on their own
                detected = matched.format_id if matched else None
                placed.append((position, SingleDataset(file=file, detected_format=detected)))
                continue

            base_name = matched.strip(file.name)
            key = (matched.format_id, base_name.lower())
            candidate = candidates.get(key)
            if candidate is None:
                candidate = _Candidate(matched.format_id, matched.bundle_kind.anchor, position)
                candidates[key] = candidate
            candidate.add(file, matched.extension, base_name, position)

        result = GroupingResult()
        for (format_id, _), candidate in candidates.items():
            if candidate.anchor is None:
                logger.warning(
                    f"No .{candidate.anchor_extension} anchor among "
                    f"{len(candidate.members)} {format_id} file(s); converting them individually"
                )
                for file, position in candidate.members:
                    placed.append(
                        (position, SingleDataset(file=file, detected_format=format_id))
                    )
                continue

            anchor_file, base_name = candidate.anchor
            bundle = BundleDataset(
                base_name=base_name,
                format_id=format_id,
                members=(anchor_file,) + tuple(file for file, _ in candidate.members),
            )
            result.bundles_by_kind.setdefault(format_id, {})[base_name] = bundle
            placed.append((candidate.position, bundle))

        placed.sort(key=lambda item: item[0])
        result.order = [dataset for _, dataset in placed]
        result.singles = [d for d in result.order if isinstance(d, SingleDataset)]

        logger.debug(
            f"Grouped {len(files)} file(s) into {len(result.bundles)} bundle(s) "
            f"and {len(result.singles)} single(s)"
        )
        return result
