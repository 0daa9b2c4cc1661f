"""Validación y normalización de lecturas ingresadas por el paciente."""

from __future__ import annotations

import logging
import math
from datetime import datetime, tzinfo

from dateutil import parser, tz

from glucose_portal.model import Reading, Tag, Unit

logger = logging.getLogger(__name__)

MGDL_PER_MMOLL = 18
MIN_MGDL = 20
MAX_MGDL = 800

_UNIT_ALIASES: dict[str, Unit] = {
    "mgdl": Unit.MGDL,
    "mg/dl": Unit.MGDL,
    "mmol/l": Unit.MMOLL,
    "mmoll": Unit.MMOLL,
}


class IngestError(ValueError):
    """Recoverable user-input error; the form should re-prompt."""


class InvalidNumber(IngestError):
    """The value does not parse to a finite number."""


class InvalidTimestamp(IngestError):
    """The timestamp is missing or cannot be parsed."""


def parse_unit(raw: Unit | str) -> Unit:
    """Normaliza el selector de unidad (acepta alias como ``mmoll``)."""
    if isinstance(raw, Unit):
        return raw
    unit = _UNIT_ALIASES.get(raw.strip().lower())
    if unit is None:
        raise ValueError(f"Unknown unit: {raw!r}")
    return unit


def parse_value(text: str) -> float:
    """Parse the value field into a finite float.

    Raises:
        InvalidNumber: On empty, non-numeric, NaN or infinite input.
    """
    cleaned = text.strip()
    if not cleaned:
        raise InvalidNumber("Please enter a numeric value.")
    try:
        value = float(cleaned)
    except ValueError as exc:
        raise InvalidNumber("Please enter a numeric value.") from exc
    if not math.isfinite(value):
        raise InvalidNumber("Please enter a numeric value.")
    return value


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves go up."""
    return math.floor(value + 0.5)


def to_mgdl(value: float, unit: Unit | str) -> int:
    """Convert to integer mg/dL (mmol/L x 18)."""
    if parse_unit(unit) is Unit.MMOLL:
        return round_half_up(value * MGDL_PER_MMOLL)
    return round_half_up(value)


def clamp_mgdl(value_mgdl: int) -> int:
    """Clamp into the accepted [20, 800] mg/dL range."""
    return min(MAX_MGDL, max(MIN_MGDL, value_mgdl))


def parse_timestamp(text: str | None, local_tz: tzinfo | None = None) -> datetime:
    """Parse a form timestamp and return it in UTC.

    Naive values (``2025-03-01T08:30``) are read in ``local_tz``.

    Raises:
        InvalidTimestamp: If the text is empty or unparsable.
    """
    if text is None or not text.strip():
        raise InvalidTimestamp("Please enter a date and time.")
    try:
        dt = parser.isoparse(text.strip())
    except ValueError:
        try:
            dt = parser.parse(text.strip())
        except (ValueError, OverflowError) as exc:
            raise InvalidTimestamp(f"Invalid date/time: {text!r}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=local_tz or tz.tzlocal())
    return dt.astimezone(tz.UTC)


def normalize_reading(
    value_text: str,
    unit: Unit | str,
    timestamp_text: str | None,
    tag: Tag | str = Tag.FASTING,
    note: str | None = None,
    local_tz: tzinfo | None = None,
) -> Reading:
    """Validate a submitted reading and build a storable record.

    Args:
        value_text: Raw value field.
        unit: ``mgdl`` or ``mmol/L``.
        timestamp_text: Raw date/time field.
        tag: Context tag.
        note: Optional free text.
        local_tz: Zone for naive timestamps (defaults to the machine zone).

    Returns:
        Reading in UTC with a clamped integer mg/dL value.

    Raises:
        InvalidNumber: If the value is not a finite number.
        InvalidTimestamp: If the timestamp is missing or invalid.
    """
    value = parse_value(value_text)
    converted = to_mgdl(value, unit)
    mgdl = clamp_mgdl(converted)
    if mgdl != converted:
        logger.info("Clamped glucose value %s mg/dL to %s", converted, mgdl)
    timestamp = parse_timestamp(timestamp_text, local_tz)
    cleaned_note = note.strip() if note else ""
    return Reading(
        timestamp=timestamp,
        value_mgdl=mgdl,
        tag=Tag(tag),
        note=cleaned_note or None,
    )
