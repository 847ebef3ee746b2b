"""
Data models for conversion outcomes and run reports.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ConversionArtifact:
    """
    A converted dataset offered to the caller for download.

    Attributes:
        filename: Suggested download name (base name + format extension)
        data: Converted bytes
        dataset: Name of the dataset it came from
        format_id: Output format id
    """

    filename: str
    data: bytes = field(repr=False)
    dataset: str
    format_id: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Success:
    """Terminal outcome of a dataset that converted."""

    data: bytes = field(repr=False)


@dataclass(frozen=True)
class Failure:
    """Terminal outcome of a dataset that did not convert."""

    message: str


ConversionOutcome = Union[Success, Failure]


class DatasetFailure(BaseModel):
    """
    A dataset that failed during a run.

    Attributes:
        name: Dataset name
        message: Classified, user-actionable message
        raw_message: Message as reported by the engine or validator
        category: Classifier category, None when no rule matched
    """

    name: str
    message: str
    raw_message: str
    category: Optional[str] = None


class RunReport(BaseModel):
    """
    Outcome of one conversion run.

    Built once per run and never persisted. ``to_text`` renders the audit
    artifact produced after every run, whatever the mix of outcomes.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    output_format: str = ""
    total_datasets: int = 0
    succeeded: List[str] = Field(default_factory=list)
    failed: List[DatasetFailure] = Field(default_factory=list)
    artifacts: List[ConversionArtifact] = Field(default_factory=list, exclude=True)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def filename(self) -> str:
        return f"conversion-report-{self.timestamp.strftime('%Y%m%dT%H%M%SZ')}.txt"

    def to_text(self) -> str:
        """Render the plain-text run report."""
        lines = [
            "geoconvert conversion report",
            f"Generated: {self.timestamp.isoformat()}",
            f"Output format: {self.output_format}",
            f"Total datasets: {self.total_datasets}",
            f"Succeeded: {len(self.succeeded)}",
            f"Failed: {len(self.failed)}",
            "",
            "SUCCEEDED",
        ]
        lines.extend(f"  - {name}" for name in self.succeeded)
        if not self.succeeded:
            lines.append("  (none)")

        lines.extend(["", "FAILED"])
        lines.extend(f"  - {failure.name}: {failure.message}" for failure in self.failed)
        if not self.failed:
            lines.append("  (none)")

        return "\n".join(lines) + "\n"
