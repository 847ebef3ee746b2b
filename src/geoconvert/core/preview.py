"""
In-memory cache of dataset preview metadata.

Entries are keyed by a content fingerprint so a changed file, a different
format or another source CRS never returns stale metadata.
"""

import hashlib
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, Optional

from geoconvert.core.config import settings
from geoconvert.models.dataset import UploadedFile
from geoconvert.models.metadata import DatasetMetadata

logger = logging.getLogger(__name__)


def preview_fingerprint(
    members: Iterable[UploadedFile],
    format_id: Optional[str],
    source_crs: Optional[str],
) -> str:
    """
    Build the cache key for a preview.

    Args:
        members: Files making up the dataset
        format_id: Input format id
        source_crs: Effective source CRS (after any override)

    Returns:
        SHA256 hex digest of the sorted member triples, format and CRS
    """
    triples = sorted((f.identity, f.size, f.last_modified) for f in members)
    key_string = str((triples, format_id or "", (source_crs or "").strip()))
    return hashlib.sha256(key_string.encode()).hexdigest()


class PreviewCache:
    """
    Bounded LRU cache of ``DatasetMetadata`` by fingerprint.

    Cleared wholesale whenever the file selection changes.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        """
        Initialize preview cache.

        Args:
            max_entries: Maximum number of cached previews
        """
        self.max_entries = max_entries or settings.preview_cache_max_entries
        self._entries: "OrderedDict[str, DatasetMetadata]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def get(self, fingerprint: str) -> Optional[DatasetMetadata]:
        metadata = self._entries.get(fingerprint)
        if metadata is None:
            self.misses += 1
            return None

        self._entries.move_to_end(fingerprint)
        self.hits += 1
        return metadata

    def put(self, fingerprint: str, metadata: DatasetMetadata) -> None:
        self._entries[fingerprint] = metadata
        self._entries.move_to_end(fingerprint)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted preview {evicted[:12]}")

    def clear(self) -> None:
        if self._entries:
            logger.debug(f"Clearing {len(self._entries)} cached preview(s)")
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with entry count, bound, hits and misses
        """
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
