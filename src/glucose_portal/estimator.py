"""Estimación de HbA1c a partir de lecturas de glucosa (media y ventana móvil)."""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, tzinfo

from dateutil import tz

from glucose_portal.model import A1cPoint, OverallEstimate, Reading, Tag

# NGSP/DCCT: A1c% = (mean mg/dL + 46.7) / 28.7
A1C_OFFSET = 46.7
A1C_SLOPE = 28.7

WINDOW_DAYS = 30
RANGE_PRESETS: tuple[int, ...] = (30, 60, 90, 180, 365, 0)

NORMAL_BELOW = 5.7
PREDIABETES_BELOW = 6.5

NO_DATA = "—"


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean, NaN for an empty input."""
    items = list(values)
    if not items:
        return math.nan
    return sum(items) / len(items)


def a1c_from_mean(mean_mgdl: float) -> float:
    """Convert a mean glucose (mg/dL) into an estimated HbA1c percentage."""
    return (mean_mgdl + A1C_OFFSET) / A1C_SLOPE


def overall_estimate(readings: Sequence[Reading]) -> OverallEstimate:
    """Mean, HbA1c and count over readings already filtered by the caller.

    Args:
        readings: Readings in any order.

    Returns:
        OverallEstimate with NaN mean/a1c when ``readings`` is empty.
    """
    m = mean(r.value_mgdl for r in readings)
    a1c = a1c_from_mean(m) if math.isfinite(m) else math.nan
    return OverallEstimate(mean_mgdl=m, a1c_percent=a1c, count=len(readings))


def rolling_a1c_series(
    readings: Sequence[Reading], window_days: int = WINDOW_DAYS
) -> list[A1cPoint]:
    """Rolling HbA1c, one point per reading, ascending by time.

    Each point averages the readings in ``[t - window_days, t]``. The left
    edge is inclusive: a reading exactly ``window_days`` older stays in.

    Args:
        readings: Readings in any order.
        window_days: Trailing window length in days.

    Returns:
        List of A1cPoint (empty for empty input).
    """
    if not readings:
        return []
    ordered = sorted(readings, key=lambda r: r.timestamp)
    window = timedelta(days=window_days)

    out: list[A1cPoint] = []
    start = 0
    total = 0.0
    for i, reading in enumerate(ordered):
        total += reading.value_mgdl
        window_start = reading.timestamp - window
        while start < i and ordered[start].timestamp < window_start:
            total -= ordered[start].value_mgdl
            start += 1
        n = i - start + 1
        out.append(
            A1cPoint(time=reading.timestamp, a1c_percent=a1c_from_mean(total / n))
        )
    return out


def a1c_status(a1c_percent: float) -> str:
    """Etiqueta clínica de una HbA1c estimada."""
    if not math.isfinite(a1c_percent):
        return "Unknown"
    if a1c_percent < NORMAL_BELOW:
        return "Normal"
    if a1c_percent < PREDIABETES_BELOW:
        return "High (Prediabetes)"
    return "High (Diabetes)"


def format_number(value: float, digits: int = 1) -> str:
    """Fixed decimals, or the no-data dash for NaN/inf."""
    if not math.isfinite(value):
        return NO_DATA
    return f"{value:.{digits}f}"


def filter_readings(
    readings: Sequence[Reading],
    *,
    range_days: int = 90,
    start: date | None = None,
    end: date | None = None,
    tag: Tag | str | None = None,
    now: datetime | None = None,
    local_tz: tzinfo | None = None,
) -> list[Reading]:
    """Filtro de tablero/gráficos: por tag y luego por rango de fechas.

    A custom range is used only when both ``start`` and ``end`` are given; it
    spans start 00:00:00 to end 23:59:59 in ``local_tz``. Otherwise the
    trailing ``range_days`` window applies, with 0 meaning all time.
    """
    selected = list(readings)
    if tag is not None and str(getattr(tag, "value", tag)) != "all":
        wanted = Tag(tag)
        selected = [r for r in selected if r.tag == wanted]

    if start is not None and end is not None:
        zone = local_tz or tz.tzlocal()
        start_ts = datetime.combine(start, time(0, 0, 0)).replace(tzinfo=zone)
        end_ts = datetime.combine(end, time(23, 59, 59)).replace(tzinfo=zone)
        return [r for r in selected if start_ts <= r.timestamp <= end_ts]

    if range_days == 0:
        return selected
    current = now or datetime.now(tz=tz.UTC)
    cutoff = current - timedelta(days=range_days)
    return [r for r in selected if r.timestamp >= cutoff]
