"""
ZIP packaging of bundles and run results.
"""

import io
import logging
import zipfile
from typing import Iterable, Optional, Tuple

from geoconvert.core.errors import ValidationError
from geoconvert.models.dataset import BundleDataset
from geoconvert.models.report import ConversionArtifact, RunReport

logger = logging.getLogger(__name__)

REPORT_ARCHIVE_NAME = "conversion-report.txt"


def _zip_entries(entries: Iterable[Tuple[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    seen = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries:
            if name in seen:
                raise ValidationError(f"Duplicate archive member '{name}'", field="files")
            seen.add(name)
            archive.writestr(name, data)
    return buffer.getvalue()


class BundlePackager:
    """
    Package multi-file datasets into a single ZIP payload.

    The engine opens the archive and locates the anchor member by its
    extension, so members keep their uploaded names.
    """

    def package(self, bundle: BundleDataset) -> bytes:
        """
        Zip every member of ``bundle``.

        Args:
            bundle: Bundle with anchor first

        Returns:
            ZIP archive bytes
        """
        data = _zip_entries((member.name, member.read_bytes()) for member in bundle.members)
        logger.debug(
            f"Packaged bundle {bundle.name} ({len(bundle.members)} member(s), {len(data)} bytes)"
        )
        return data

    def package_results(
        self,
        artifacts: Iterable[ConversionArtifact],
        report: Optional[RunReport] = None,
    ) -> bytes:
        """
        Zip converted artifacts, plus the run report when given.

        Returns:
            ZIP archive bytes
        """
        entries = []
        used = {REPORT_ARCHIVE_NAME}
        for artifact in artifacts:
            name = artifact.filename
            stem, dot, ext = name.partition(".")
            counter = 1
            # Two datasets may share a base name (e.g. roads.kml and roads.gpx)
            while name in used:
                counter += 1
                name = f"{stem}-{counter}{dot}{ext}"
            used.add(name)
            entries.append((name, artifact.data))
        if report is not None:
            entries.append((REPORT_ARCHIVE_NAME, report.to_text().encode("utf-8")))
        return _zip_entries(entries)
