"""Generación de Excel formateado con lecturas y HbA1c estimada para el médico."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, Side

_WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_HEADER_MAP: dict[str, str] = {
    "weekday": "Day",
    "datetime": "Date / Time",
    "glucose_mg_dl": "Glucose (mg/dL)",
    "tag": "Type",
    "note": "Note",
    "a1c_percent": "Est. HbA1c (%)",
    "status": "Status",
}

_WIDTHS: dict[str, int] = {
    "Day": 6,
    "Date / Time": 18,
    "Glucose (mg/dL)": 14,
    "Type": 12,
    "Note": 30,
    "Est. HbA1c (%)": 14,
    "Status": 20,
}

_NUMBER_FORMATS: dict[str, str] = {
    "Date / Time": "dd/mm/yyyy hh:mm",
    "Glucose (mg/dL)": "0",
    "Est. HbA1c (%)": "0.00",
}


@dataclass(frozen=True)
class ExcelLayout:
    """Layout/formatting configuration for the patient workbook."""

    readings_sheet: str = "Readings"
    a1c_sheet: str = "Estimated HbA1c"


def _weekday_label(i: object) -> str:
    """Convierte índice 0-6 (lunes-domingo) a etiqueta de 3 letras."""
    try:
        if i is None or (isinstance(i, float) and pd.isna(i)):
            return ""
        if isinstance(i, int | float):
            idx = int(i)
            return _WEEKDAYS[idx] if 0 <= idx < 7 else ""
        return ""
    except (ValueError, TypeError):
        return ""


def _add_weekday_column(export_df: pd.DataFrame) -> pd.DataFrame:
    """Añade columna weekday (Day) a partir de datetime."""
    if "datetime" not in export_df.columns or export_df.empty:
        return export_df
    weekday_series = pd.to_datetime(export_df["datetime"], errors="coerce").dt.weekday
    export_df = export_df.copy()
    export_df["weekday"] = weekday_series.map(_weekday_label)
    cols = ["weekday"] + [c for c in export_df.columns if c != "weekday"]
    return export_df[cols]


def _strip_timezone(export_df: pd.DataFrame) -> pd.DataFrame:
    """Excel no admite datetimes con timezone."""
    export_df = export_df.copy()
    if "datetime" in export_df.columns:
        export_df["datetime"] = export_df["datetime"].map(
            lambda ts: ts.replace(tzinfo=None) if hasattr(ts, "tzinfo") else ts
        )
    return export_df


def _readings_export_frame(readings_df: pd.DataFrame) -> pd.DataFrame:
    keep = [c for c in ("datetime", "glucose_mg_dl", "tag", "note") if c in readings_df]
    out = _add_weekday_column(readings_df.loc[:, keep])
    return _strip_timezone(out).rename(columns=_HEADER_MAP)


def write_patient_xlsx(
    readings_df: pd.DataFrame,
    series_df: pd.DataFrame,
    out_path: Path,
    layout: ExcelLayout,
) -> None:
    """Write a formatted workbook suitable for printing.

    Args:
        readings_df: Output of ``readings_to_frame``.
        series_df: Output of ``series_to_frame``.
        out_path: Output path for the XLSX file.
        layout: Sheet names.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    readings_export = _readings_export_frame(readings_df)
    series_export = _strip_timezone(series_df).rename(columns=_HEADER_MAP)

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        readings_export.to_excel(writer, index=False, sheet_name=layout.readings_sheet)
        series_export.to_excel(writer, index=False, sheet_name=layout.a1c_sheet)
        _format_sheet(writer.book[layout.readings_sheet])
        _format_sheet(writer.book[layout.a1c_sheet])


def _style_header_row(ws: Any) -> None:
    """Aplica fuente negrita, alineación y borde a la fila de cabecera."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    header_font = Font(bold=True)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = center
        cell.border = border


def _style_body_rows(ws: Any) -> None:
    """Aplica alineación, borde y altura fija a las filas de datos."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.alignment = center
            cell.border = border
        ws.row_dimensions[row[0].row].height = 15


def _get_header_col_index(ws: Any) -> dict[str, int]:
    headers = [str(cell.value) for cell in ws[1]]
    return {name: idx + 1 for idx, name in enumerate(headers)}


def _format_sheet(ws: Any) -> None:
    """Apply borders, widths and number formats to a worksheet.

    Args:
        ws: openpyxl worksheet.
    """
    _style_header_row(ws)
    _style_body_rows(ws)
    col_index = _get_header_col_index(ws)
    for header, width in _WIDTHS.items():
        idx = col_index.get(header)
        if idx is not None:
            letter = ws.cell(row=1, column=idx).column_letter
            ws.column_dimensions[letter].width = width
    for row in ws.iter_rows(min_row=2):
        for header, fmt in _NUMBER_FORMATS.items():
            idx = col_index.get(header)
            if idx is not None:
                row[idx - 1].number_format = fmt
