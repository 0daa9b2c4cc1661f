from __future__ import annotations

import math
from datetime import date, datetime, time

import pandas as pd
from dateutil import tz

from glucose_portal.app import dashboard_text, range_label
from glucose_portal.display import (
    filter_columns,
    format_mean,
    format_preview_value,
    render_table,
)
from glucose_portal.model import Reading


def test_format_preview_value_variants() -> None:
    assert format_preview_value(None) == ""
    assert format_preview_value(float("nan")) == ""
    assert format_preview_value(pd.Timestamp("2025-03-01 08:30", tz="UTC")) == (
        "01/03/2025 08:30"
    )
    assert format_preview_value(datetime(2025, 3, 1, 8, 30)) == "01/03/2025 08:30"
    assert format_preview_value(date(2025, 3, 1)) == "01/03/2025"
    assert format_preview_value(120.0) == "120"
    assert format_preview_value(5.8) == "5.8"
    assert format_preview_value(time(8, 30)) == "08:30:00"
    assert format_preview_value("fasting") == "fasting"


def test_format_mean_rounds_or_dashes() -> None:
    assert format_mean(119.6) == "120"
    assert format_mean(math.nan) == "—"


def test_filter_columns_puts_keys_first() -> None:
    df = pd.DataFrame({"tag": ["x"], "datetime": [1], "reading_id": [7], "note": [""]})
    out = filter_columns(df, ["tag", "datetime", "reading_id"])
    assert list(out.columns) == ["reading_id", "datetime", "tag"]
    assert list(filter_columns(df, ["missing"]).columns) == list(df.columns)


def test_render_table_empty_text() -> None:
    assert render_table(pd.DataFrame()) == "No readings found."


def test_dashboard_text_no_data_and_values() -> None:
    empty = dashboard_text([], 90)
    assert "Last 90 days" in empty
    assert "Mean glucose (mg/dL): —" in empty
    assert "Total readings: 0" in empty

    readings = [
        Reading(timestamp=datetime(2025, 1, 1, tzinfo=tz.UTC), value_mgdl=120),
    ]
    text = dashboard_text(readings, 0)
    assert range_label(0) == "All time"
    assert "Estimated HbA1c: 5.81% (High (Prediabetes))" in text
