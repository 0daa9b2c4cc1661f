from __future__ import annotations

from datetime import datetime

import pytest
from dateutil import tz

from glucose_portal.ingest import (
    IngestError,
    InvalidNumber,
    InvalidTimestamp,
    clamp_mgdl,
    normalize_reading,
    parse_timestamp,
    parse_unit,
    to_mgdl,
)
from glucose_portal.model import Tag, Unit


def test_mmol_conversion_rounds_to_nearest() -> None:
    assert to_mgdl(6.7, "mmol/L") == 121
    assert to_mgdl(5.5, Unit.MMOLL) == 99


def test_mgdl_input_is_rounded_half_up() -> None:
    assert to_mgdl(154.5, "mgdl") == 155
    assert to_mgdl(154.4, "mgdl") == 154


def test_clamp_bounds() -> None:
    assert clamp_mgdl(900) == 800
    assert clamp_mgdl(5) == 20
    assert clamp_mgdl(120) == 120


def test_parse_unit_aliases() -> None:
    assert parse_unit("mmoll") is Unit.MMOLL
    assert parse_unit("MG/DL") is Unit.MGDL
    with pytest.raises(ValueError, match="Unknown unit"):
        parse_unit("g/L")


@pytest.mark.parametrize("raw", ["", "   ", "abc", "nan", "inf", "-inf"])
def test_normalize_rejects_non_finite_values(raw: str) -> None:
    with pytest.raises(InvalidNumber):
        normalize_reading(raw, "mgdl", "2025-03-01T08:30")


@pytest.mark.parametrize("raw", [None, "", "  ", "not a date"])
def test_normalize_rejects_bad_timestamp(raw: str | None) -> None:
    with pytest.raises(InvalidTimestamp):
        normalize_reading("120", "mgdl", raw)


def test_ingest_errors_are_value_errors() -> None:
    assert issubclass(InvalidNumber, IngestError)
    assert issubclass(InvalidTimestamp, ValueError)


def test_normalize_reading_happy_path_converts_to_utc() -> None:
    local = tz.gettz("America/Argentina/Buenos_Aires")
    reading = normalize_reading(
        "6.7",
        "mmol/L",
        "2025-03-01T08:30",
        tag="postmeal",
        note="  rice lunch  ",
        local_tz=local,
    )
    assert reading.value_mgdl == 121
    assert reading.tag is Tag.POSTMEAL
    assert reading.note == "rice lunch"
    assert reading.timestamp == datetime(2025, 3, 1, 11, 30, tzinfo=tz.UTC)
    assert reading.reading_id is None


def test_normalize_reading_clamps_and_drops_blank_note() -> None:
    high = normalize_reading("900", "mgdl", "2025-03-01T08:30", local_tz=tz.UTC)
    low = normalize_reading("5", "mgdl", "2025-03-01T08:30", note="   ", local_tz=tz.UTC)
    assert high.value_mgdl == 800
    assert low.value_mgdl == 20
    assert low.note is None
    assert low.tag is Tag.FASTING


def test_parse_timestamp_keeps_explicit_offset() -> None:
    dt = parse_timestamp("2025-03-01T08:30:00+02:00", local_tz=tz.UTC)
    assert dt == datetime(2025, 3, 1, 6, 30, tzinfo=tz.UTC)
