"""Formateo de DataFrames para vista previa en texto (CLI y GUI)."""

from __future__ import annotations

import math
from datetime import date, datetime

import pandas as pd

from glucose_portal.estimator import NO_DATA


def filter_columns(df: pd.DataFrame, selected_fields: list[str]) -> pd.DataFrame:
    """Keep the selected columns, date/id columns first."""
    if df.empty:
        return df.copy()
    cols = [field for field in selected_fields if field in df.columns]
    cols = _prioritize_key_columns(cols)
    if not cols:
        return df.copy()
    return df.loc[:, cols].copy()


def _prioritize_key_columns(cols: list[str]) -> list[str]:
    priority = ["reading_id", "date", "datetime"]
    ordered = [name for name in priority if name in cols]
    ordered.extend([name for name in cols if name not in priority])
    return ordered


def display_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Prepare a string-renderable DataFrame for aligned preview."""
    if df.empty:
        return df.copy()
    out = df.copy()
    for col in out.columns:
        out[col] = out[col].map(format_preview_value)
    return out


def render_table(df: pd.DataFrame, empty_text: str = "No readings found.") -> str:
    """Aligned plain-text table, or ``empty_text``."""
    if df.empty:
        return empty_text
    return display_frame(df).to_string(index=False, max_colwidth=28)


def format_preview_value(value: object) -> str:
    """Format preview values without NaN/scientific notation."""
    if value is None or pd.isna(value):
        return ""
    if isinstance(value, pd.Timestamp):
        ts = value.tz_localize(None) if value.tzinfo is not None else value
        return ts.strftime("%d/%m/%Y %H:%M")
    if isinstance(value, datetime):
        dt_value = value.replace(tzinfo=None) if value.tzinfo is not None else value
        return dt_value.strftime("%d/%m/%Y %H:%M")
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        text = format(value, "f").rstrip("0").rstrip(".")
        return text if text else "0"
    return str(value)


def format_mean(value: float) -> str:
    """Mean glucose rounded to a whole mg/dL, or the no-data dash."""
    if not math.isfinite(value):
        return NO_DATA
    return str(round(value))
