"""
Priority bucket classification from the free-text plan category.

Categories are typed by hand ("UH (Ultra High)", "High", "M", "med-term"),
so classification is a case-insensitive match:

    Ultra High : contains "UH" or "ULTRA"  (checked first)
    High       : starts with "H"
    Medium     : starts with "M"
    Low        : everything else, including empty / unrecognised labels

The Low fallback is a known data-quality compromise: a mistyped High plan is
graded against the Low threshold. Unrecognised labels are logged so the
taxonomy can be cleaned up; the bucket list itself is not redesigned here.
The fallback covers grading only: an unrecognised label never requires
management approval to drop.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class PriorityBucket(str, Enum):
    ULTRA_HIGH = "UH"
    HIGH = "H"
    MEDIUM = "M"
    LOW = "L"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    PriorityBucket.ULTRA_HIGH: "Ultra High",
    PriorityBucket.HIGH: "High",
    PriorityBucket.MEDIUM: "Medium",
    PriorityBucket.LOW: "Low",
}

_EXPLICIT_LOW = ("L", "LOW")


def classify_priority(category: str | None) -> PriorityBucket:
    """Map a free-text category label to its priority bucket."""
    label = (category or "").strip().upper()

    if "UH" in label or "ULTRA" in label:
        return PriorityBucket.ULTRA_HIGH
    if label.startswith("H"):
        return PriorityBucket.HIGH
    if label.startswith("M"):
        return PriorityBucket.MEDIUM

    if not label.startswith(_EXPLICIT_LOW):
        logger.warning(
            "Unrecognised priority category %r: falling back to Low bucket", category,
        )
    return PriorityBucket.LOW


def is_recognised_priority(category: str | None) -> bool:
    """True when *category* names a bucket instead of falling back to Low."""
    label = (category or "").strip().upper()
    return (
        "UH" in label or "ULTRA" in label
        or label.startswith(("H", "M") + _EXPLICIT_LOW)
    )
