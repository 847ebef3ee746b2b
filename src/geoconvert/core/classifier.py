"""
Classification of raw engine error messages.

The engine reports failures as prose. An ordered list of rules maps known
phrases to advice the user can act on; the first matching rule wins.
Memory rules come first because an exhausted memory limit cascades into
secondary symptoms such as coordinate database errors.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# A leading "Token:" longer than this is treated as prose, not a token
MAX_TOKEN_LENGTH = 40


@dataclass(frozen=True)
class ClassificationRule:
    """One (phrases, advice) rule; matching is on the lower-cased message."""

    category: str
    phrases: Tuple[str, ...]
    advice: str

    def matches(self, lowered: str) -> bool:
        return any(phrase in lowered for phrase in self.phrases)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one message."""

    message: str
    category: Optional[str] = None


DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        "memory",
        ("out of memory", "memory allocation", "cannot allocate", "bad_alloc",
         "memoryerror", "memory limit"),
        "The dataset is too large to convert in memory. Split it into smaller "
        "files or filter it with a where clause.",
    ),
    ClassificationRule(
        "coordinate_database",
        ("proj.db", "proj_create", "crs not found"),
        "The coordinate reference system could not be found. Check the source "
        "and target CRS or enter a full PROJ definition.",
    ),
    ClassificationRule(
        "partial_failure",
        ("terminating translation prematurely", "failed to write",
         "unable to write feature"),
        "Some features could not be written. Enable 'skip failures' or "
        "'make valid' and try again.",
    ),
    ClassificationRule(
        "format_not_recognized",
        ("not recognized as a supported file format", "unable to open",
         "unsupported driver", "unsupported format", "no driver"),
        "The file could not be read in the selected format. Check the input "
        "format and that every companion file is included.",
    ),
    ClassificationRule(
        "reprojection",
        ("failed to reproject", "reprojection failed", "transformation failed",
         "unable to transform", "cannot transform", "failed to transform"),
        "Coordinates could not be reprojected. Verify the source CRS or leave "
        "the target CRS empty.",
    ),
    ClassificationRule(
        "invalid_geometry",
        ("self-intersection", "invalid geometry", "topologyexception",
         "topology error", "ring self"),
        "The dataset contains invalid geometries. Enable 'make valid' to "
        "repair them during conversion.",
    ),
    ClassificationRule(
        "malformed_filter",
        ("sql expression parsing error", "syntax error"),
        "The where clause could not be parsed. Check the filter syntax, "
        "for example: population > 1000.",
    ),
    ClassificationRule(
        "missing_field",
        ("not recognised as an available field", "no such field",
         "field not found", "unknown field"),
        "A referenced field does not exist. Check field names in the where "
        "clause and the selected fields.",
    ),
    ClassificationRule(
        "missing_layer",
        ("couldn't fetch requested layer", "layer not found", "no such layer"),
        "The requested layer does not exist in the input dataset.",
    ),
    ClassificationRule(
        "empty_result",
        ("no features", "empty result"),
        "No features matched. Relax the where clause or the geometry type filter.",
    ),
    ClassificationRule(
        "mixed_geometry",
        ("attempt to write non-", "mixed geometry", "geometry type mismatch"),
        "The output format needs a single geometry type. Pick a geometry type "
        "filter or enable 'explode collections'.",
    ),
    ClassificationRule(
        "z_dimension",
        ("z dimension", "2.5d", "25d geometry", "3d geometry", "has z values",
         "z coordinates"),
        "The output format does not support Z coordinates. Disable 'keep Z' "
        "to drop them.",
    ),
)


def leading_token(message: str) -> str:
    """
    Return the leading token of an error message.

    The text before the first colon when it is short enough to be a token
    (e.g. ``ConversionError``), otherwise the first word.
    """
    stripped = message.strip()
    head, sep, _ = stripped.partition(":")
    if sep and head.strip() and len(head.strip()) <= MAX_TOKEN_LENGTH:
        return head.strip()
    parts = stripped.split(None, 1)
    return parts[0].rstrip(":") if parts else ""


class ErrorClassifier:
    """
    Map raw engine messages to actionable messages.

    Example:
        >>> ErrorClassifier().classify("RuntimeError: proj_create: crs not found")
        'RuntimeError: The coordinate reference system could not be found. ...'
    """

    def __init__(self, rules: Optional[Sequence[ClassificationRule]] = None) -> None:
        self.rules: Tuple[ClassificationRule, ...] = tuple(rules or DEFAULT_RULES)

    def classify_detailed(self, raw_message: str) -> Classification:
        lowered = raw_message.lower()
        for rule in self.rules:
            if rule.matches(lowered):
                token = leading_token(raw_message)
                message = f"{token}: {rule.advice}" if token else rule.advice
                return Classification(message=message, category=rule.category)
        return Classification(message=raw_message)

    def classify(self, raw_message: str) -> str:
        """
        Classify ``raw_message``.

        Returns:
            ``"<leading token>: <advice>"`` for the first matching rule, or
            the message unchanged when nothing matches
        """
        return self.classify_detailed(raw_message).message
