"""Vistas tabulares (pandas) de lecturas, resumen diario y serie de HbA1c."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import tzinfo

import pandas as pd
from dateutil import tz

from glucose_portal.estimator import a1c_status
from glucose_portal.model import A1cPoint, Reading

READING_COLUMNS: list[str] = [
    "reading_id",
    "datetime",
    "date",
    "time",
    "glucose_mg_dl",
    "tag",
    "note",
]

DAILY_COLUMNS: list[str] = [
    "date",
    "glucose_count",
    "glucose_min",
    "glucose_max",
    "glucose_avg",
]

SERIES_COLUMNS: list[str] = ["datetime", "a1c_percent", "status"]


def readings_to_frame(
    readings: Sequence[Reading], local_tz: tzinfo | None = None
) -> pd.DataFrame:
    """Convert readings to a DataFrame in local time, sorted by datetime."""
    zone = local_tz or tz.tzlocal()
    rows = []
    for r in readings:
        local = r.timestamp.astimezone(zone)
        rows.append(
            {
                "reading_id": r.reading_id,
                "datetime": local,
                "date": local.date(),
                "time": local.time().replace(second=0, microsecond=0),
                "glucose_mg_dl": r.value_mgdl,
                "tag": r.tag.value,
                "note": r.note,
            }
        )
    df = pd.DataFrame(rows, columns=READING_COLUMNS)
    if df.empty:
        return df
    return df.sort_values("datetime", kind="stable").reset_index(drop=True)


def daily_glucose_summary(glucose_events: pd.DataFrame) -> pd.DataFrame:
    """Aggregate glucose by day (count/min/max/avg)."""
    if glucose_events.empty:
        return pd.DataFrame(columns=DAILY_COLUMNS)
    g = glucose_events.groupby("date", as_index=False).agg(
        glucose_count=("glucose_mg_dl", "count"),
        glucose_min=("glucose_mg_dl", "min"),
        glucose_max=("glucose_mg_dl", "max"),
        glucose_avg=("glucose_mg_dl", "mean"),
    )
    g["glucose_avg"] = g["glucose_avg"].round(2)
    return g.sort_values("date").reset_index(drop=True)


def series_to_frame(
    points: Sequence[A1cPoint], local_tz: tzinfo | None = None
) -> pd.DataFrame:
    """Rolling HbA1c series as a DataFrame with a status label per point."""
    zone = local_tz or tz.tzlocal()
    rows = [
        {
            "datetime": p.time.astimezone(zone),
            "a1c_percent": round(p.a1c_percent, 2),
            "status": a1c_status(p.a1c_percent),
        }
        for p in points
    ]
    return pd.DataFrame(rows, columns=SERIES_COLUMNS)
