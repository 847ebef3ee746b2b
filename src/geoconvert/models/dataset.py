"""
Data models for uploaded files and the datasets built from them.
"""

import hashlib
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union


@dataclass(frozen=True)
class UploadedFile:
    """
    A user-supplied file.

    The content handle is either a filesystem path or the raw bytes; the
    orchestration layer borrows the bytes per operation via ``read_bytes``
    and never keeps them.

    Attributes:
        name: File name as supplied by the user (no directories)
        size: Size in bytes
        last_modified: Modification timestamp (seconds since the epoch)
        source: Path to the file, or its content
    """

    name: str
    size: int
    last_modified: float
    source: Union[Path, bytes] = field(repr=False, compare=False)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "UploadedFile":
        """
        Create an UploadedFile for a file on disk.

        Raises:
            FileNotFoundError: If the path does not exist
        """
        path = Path(path)
        stat = path.stat()
        return cls(name=path.name, size=stat.st_size, last_modified=stat.st_mtime, source=path)

    @classmethod
    def from_bytes(
        cls, name: str, data: bytes, last_modified: Optional[float] = None
    ) -> "UploadedFile":
        """Create an UploadedFile from in-memory content."""
        return cls(
            name=os.path.basename(name),
            size=len(data),
            last_modified=time.time() if last_modified is None else last_modified,
            source=bytes(data),
        )

    @property
    def identity(self) -> str:
        """
        Stable identity used in preview fingerprints.

        Paths identify themselves; in-memory content is identified by name
        and digest so that two uploads with the same name never collide.
        """
        if isinstance(self.source, Path):
            return str(self.source.resolve())
        digest = hashlib.sha1(self.source).hexdigest()
        return f"{self.name}#{digest}"

    def read_bytes(self) -> bytes:
        if isinstance(self.source, Path):
            return self.source.read_bytes()
        return self.source


@dataclass(frozen=True)
class SingleDataset:
    """
    One file converted on its own.

    Attributes:
        file: The uploaded file
        detected_format: Format id from the extension, None when unknown
    """

    file: UploadedFile
    detected_format: Optional[str]

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def base_name(self) -> str:
        stem, dot, _ = self.file.name.rpartition(".")
        return stem if dot and stem else self.file.name

    @property
    def format_id(self) -> Optional[str]:
        return self.detected_format

    @property
    def members(self) -> Tuple[UploadedFile, ...]:
        return (self.file,)


@dataclass(frozen=True)
class BundleDataset:
    """
    Files of a multi-file format that convert together.

    Attributes:
        base_name: Shared base name of the members
        format_id: Format the bundle converts as
        members: Anchor first, then companions in upload order
    """

    base_name: str
    format_id: str
    members: Tuple[UploadedFile, ...]

    @property
    def name(self) -> str:
        return self.base_name

    @property
    def anchor(self) -> UploadedFile:
        return self.members[0]


Dataset = Union[SingleDataset, BundleDataset]


@dataclass
class GroupingResult:
    """
    Output of grouping a file selection.

    Attributes:
        bundles_by_kind: format id -> base name -> bundle
        singles: Files converted on their own, in upload order
        order: Dataset order by first appearance in the selection
    """

    bundles_by_kind: Dict[str, Dict[str, BundleDataset]] = field(default_factory=dict)
    singles: List[SingleDataset] = field(default_factory=list)
    order: List[Dataset] = field(default_factory=list)

    @property
    def bundles(self) -> List[BundleDataset]:
        return [b for kind in self.bundles_by_kind.values() for b in kind.values()]

    @property
    def datasets(self) -> List[Dataset]:
        return list(self.order)

    def __len__(self) -> int:
        return len(self.order)
