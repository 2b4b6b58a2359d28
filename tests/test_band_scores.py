from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from mockexam.services.band_scores import (
    BandConversionError,
    band_descriptor,
    composite,
    is_valid_band,
    raw_to_band,
    round_to_band,
    rubric_band,
    weighted_band,
)


@pytest.mark.parametrize(
    "correct, band",
    [(39, 9.0), (40, 9.0), (37, 8.5), (30, 7.0), (27, 6.5), (26, 6.0), (23, 6.0), (22, 5.5), (0, 1.0)],
)
def test_listening_conversion_brackets(correct, band):
    assert raw_to_band(correct, 40) == band


@pytest.mark.parametrize("scale", ["listening", "reading", "academic-reading", "general-reading"])
def test_raw_to_band_is_monotonic_and_on_the_half_band_grid(scale):
    bands = [raw_to_band(correct, 40, scale=scale) for correct in range(41)]
    assert bands == sorted(bands)
    assert all(is_valid_band(band) for band in bands)


def test_reading_scales_differ_in_the_middle():
    assert raw_to_band(30, 40, scale="academic-reading") == 6.5
    assert raw_to_band(34, 40, scale="general-reading") == 7.5
    assert raw_to_band(34, 40, scale="academic-reading") == 7.0


def test_short_papers_scale_to_forty():
    assert raw_to_band(20, 20) == raw_to_band(40, 40)
    assert raw_to_band(3, 6) == raw_to_band(20, 40)


@pytest.mark.parametrize(
    "correct, total, scale",
    [(-1, 40, "listening"), (41, 40, "listening"), (1, 0, "listening"), (1, 40, "unknown")],
)
def test_raw_to_band_rejects_invalid_input(correct, total, scale):
    with pytest.raises(BandConversionError):
        raw_to_band(correct, total, scale=scale)


def test_composite_rounds_quarter_bands_up():
    assert composite({"listening": 6.5, "reading": 7.0, "writing": 6.0, "speaking": 7.5}) == 7.0
    assert composite({"listening": 6.0, "reading": 6.5, "writing": 6.0, "speaking": 6.5}) == 6.5
    assert composite({"listening": 6.0, "reading": 6.0, "writing": 6.0, "speaking": 6.5}) == 6.0


def test_composite_requires_all_four_sections():
    with pytest.raises(BandConversionError):
        composite({"listening": 6.5, "reading": 7.0, "writing": 6.0})
    with pytest.raises(BandConversionError):
        composite({"listening": 6.5, "reading": 7.0, "writing": 6.0, "speaking": None})


def test_composite_rejects_out_of_range_bands():
    with pytest.raises(BandConversionError):
        composite({"listening": 9.5, "reading": 7.0, "writing": 6.0, "speaking": 6.0})


def test_round_to_band_clamps():
    assert round_to_band(9.4) == 9.0
    assert round_to_band(-1) == 0.0
    assert round_to_band(5.74) == 5.5


def test_rubric_and_weighted_bands():
    assert rubric_band({"a": 6.0, "b": 6.5, "c": 7.0, "d": 6.5}) == 6.5
    # Task 2 counts twice: (6.0 + 2 * 7.0) / 3 = 6.67
    assert weighted_band([6.0, 7.0], [1, 2]) == 6.5
    with pytest.raises(BandConversionError):
        weighted_band([6.0], [1, 2])


def test_band_descriptor_labels():
    assert band_descriptor(9.0) == "Expert User"
    assert band_descriptor(7.5) == "Good User"
    assert band_descriptor(0.0) == "Did Not Attempt"
