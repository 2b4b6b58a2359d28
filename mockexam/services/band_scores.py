"""Raw-score to band conversion and band aggregation."""

from __future__ import annotations

import math
from typing import Mapping, Sequence

BAND_STEP = 0.5
MIN_BAND = 0.0
MAX_BAND = 9.0
REFERENCE_TOTAL = 40

# (minimum raw score out of 40, band) ordered from the top band down.
LISTENING_THRESHOLDS: tuple[tuple[int, float], ...] = (
    (39, 9.0),
    (37, 8.5),
    (35, 8.0),
    (32, 7.5),
    (30, 7.0),
    (27, 6.5),
    (23, 6.0),
    (18, 5.5),
    (16, 5.0),
    (13, 4.5),
    (11, 4.0),
    (8, 3.5),
    (6, 3.0),
    (4, 2.5),
    (2, 2.0),
    (1, 1.5),
    (0, 1.0),
)

ACADEMIC_READING_THRESHOLDS: tuple[tuple[int, float], ...] = (
    (40, 9.0),
    (39, 8.5),
    (37, 8.0),
    (35, 7.5),
    (33, 7.0),
    (30, 6.5),
    (27, 6.0),
    (24, 5.5),
    (20, 5.0),
    (17, 4.5),
    (14, 4.0),
    (11, 3.5),
    (10, 3.0),
    (0, 2.5),
)

GENERAL_READING_THRESHOLDS: tuple[tuple[int, float], ...] = (
    (40, 9.0),
    (38, 8.5),
    (36, 8.0),
    (34, 7.5),
    (32, 7.0),
    (30, 6.5),
    (27, 6.0),
    (24, 5.5),
    (21, 5.0),
    (19, 4.5),
    (16, 4.0),
    (14, 3.5),
    (11, 3.0),
    (0, 2.5),
)

SCALES: dict[str, tuple[tuple[int, float], ...]] = {
    "listening": LISTENING_THRESHOLDS,
    "reading": ACADEMIC_READING_THRESHOLDS,
    "academic-reading": ACADEMIC_READING_THRESHOLDS,
    "general-reading": GENERAL_READING_THRESHOLDS,
}

BAND_DESCRIPTORS: tuple[tuple[float, str], ...] = (
    (9.0, "Expert User"),
    (8.0, "Very Good User"),
    (7.0, "Good User"),
    (6.0, "Competent User"),
    (5.0, "Modest User"),
    (4.0, "Limited User"),
    (3.0, "Extremely Limited User"),
    (2.0, "Intermittent User"),
    (1.0, "Non User"),
    (0.0, "Did Not Attempt"),
)

SECTION_NAMES = ("listening", "reading", "writing", "speaking")


class BandConversionError(ValueError):
    """Raised when a raw score or band set cannot be converted."""


def round_to_band(value: float) -> float:
    """Round half-up to the nearest 0.5 and clamp to the band range."""

    # The epsilon keeps values like 6.749999 from float sums on the right side.
    rounded = math.floor(value / BAND_STEP + 0.5 + 1e-9) * BAND_STEP
    return min(MAX_BAND, max(MIN_BAND, rounded))


def _scale_to_reference(correct: int, total: int) -> int:
    if total == REFERENCE_TOTAL:
        return correct
    return math.floor(correct * REFERENCE_TOTAL / total + 0.5)


def raw_to_band(correct: int, total: int = REFERENCE_TOTAL, *, scale: str = "listening") -> float:
    """Map ``correct`` out of ``total`` to a band using the named scale."""

    thresholds = SCALES.get(scale)
    if thresholds is None:
        raise BandConversionError(f"Unknown band scale '{scale}'.")
    if total <= 0:
        raise BandConversionError("total must be positive")
    if correct < 0 or correct > total:
        raise BandConversionError(f"Raw score {correct} is outside 0..{total}.")

    reference = _scale_to_reference(correct, total)
    for minimum, band in thresholds:
        if reference >= minimum:
            return band
    return thresholds[-1][1]


def composite(bands: Mapping[str, float | None]) -> float:
    """Average the four section bands and round half-up to the nearest 0.5."""

    missing = [name for name in SECTION_NAMES if bands.get(name) is None]
    if missing:
        raise BandConversionError(
            "All four section bands are required; missing " + ", ".join(missing) + "."
        )
    values = [float(bands[name]) for name in SECTION_NAMES]
    for name, value in zip(SECTION_NAMES, values):
        if not MIN_BAND <= value <= MAX_BAND:
            raise BandConversionError(f"{name} band {value} is outside 0..9.")
    return round_to_band(sum(values) / len(values))


def rubric_band(criteria: Mapping[str, float]) -> float:
    if not criteria:
        raise BandConversionError("At least one criterion score is required.")
    return round_to_band(sum(float(score) for score in criteria.values()) / len(criteria))


def weighted_band(task_bands: Sequence[float], weights: Sequence[float]) -> float:
    if not task_bands or len(task_bands) != len(weights):
        raise BandConversionError("Each task band needs exactly one weight.")
    total_weight = float(sum(weights))
    if total_weight <= 0:
        raise BandConversionError("Task weights must be positive.")
    weighted = sum(band * weight for band, weight in zip(task_bands, weights))
    return round_to_band(weighted / total_weight)


def is_valid_band(value: float) -> bool:
    return MIN_BAND <= value <= MAX_BAND and float(value / BAND_STEP).is_integer()


def band_descriptor(band: float) -> str:
    for minimum, label in BAND_DESCRIPTORS:
        if band >= minimum:
            return label
    return BAND_DESCRIPTORS[-1][1]


__all__ = [
    "BAND_STEP",
    "BandConversionError",
    "REFERENCE_TOTAL",
    "SCALES",
    "band_descriptor",
    "composite",
    "is_valid_band",
    "raw_to_band",
    "round_to_band",
    "rubric_band",
    "weighted_band",
]
