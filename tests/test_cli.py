"""Tests for CLI entrypoints."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from dateutil import tz

from glucose_portal import cli
from glucose_portal.storage import SQLiteStore


def _run(db: Path, user: str, *args: str) -> int:
    return cli.main(["--db", str(db), "--user", user, *args])


def test_parse_args_custom_values() -> None:
    ns = cli.parse_args(
        ["--db", "/tmp/x.sqlite3", "--user", "ana", "add", "6.7", "--unit", "mmol/L"]
    )
    assert ns.db == "/tmp/x.sqlite3"
    assert ns.command == "add"
    assert ns.value == "6.7"
    assert ns.unit == "mmol/L"
    assert ns.tag == "fasting"


def test_add_requires_registration(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    code = _run(db, "ana", "add", "120", "--at", "2025-03-01T08:30")
    assert code == cli.EXIT_NOT_REGISTERED
    assert "not registered" in capsys.readouterr().out


def test_register_add_summary_and_delete(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    assert _run(db, "ana", "register", "--full-name", "Ana Pérez") == 0
    assert "Patient ID DIB-" in capsys.readouterr().out

    for value in ("100", "120", "140"):
        assert _run(db, "ana", "add", value, "--at", "2025-03-01T08:30") == 0
    assert _run(db, "ana", "add", "6.7", "--unit", "mmol/L", "--at", "2025-03-02") == 0
    out = capsys.readouterr().out
    assert "(121 mg/dL)" in out

    assert _run(db, "ana", "summary", "--range-days", "0") == 0
    out = capsys.readouterr().out
    assert "Mean glucose (mg/dL): 120" in out
    assert "Total readings: 4" in out

    store = SQLiteStore(db)
    patient = store.patient_for_user("ana")
    assert patient is not None
    first_id = store.list_readings(patient.patient_id)[0].reading_id
    assert first_id is not None

    assert _run(db, "ana", "delete", str(first_id)) == 0
    assert _run(db, "ana", "delete", str(first_id)) == cli.EXIT_NOT_FOUND
    assert len(store.list_readings(patient.patient_id)) == 3


def test_add_invalid_number_returns_input_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    code = _run(db, "ana", "add", "abc", "--at", "2025-03-01T08:30")
    assert code == cli.EXIT_INPUT_ERROR
    assert "numeric value" in capsys.readouterr().out


def test_summary_without_readings_prints_dash(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    capsys.readouterr()
    assert _run(db, "ana", "summary") == 0
    out = capsys.readouterr().out
    assert "Mean glucose (mg/dL): —" in out
    assert "Estimated HbA1c (%): —" in out
    assert "Status: Unknown" in out


def test_series_prints_one_row_per_reading(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    _run(db, "ana", "add", "100", "--at", "2025-01-01T08:00")
    _run(db, "ana", "add", "200", "--at", "2025-01-05T08:00")
    capsys.readouterr()

    assert _run(db, "ana", "series", "--range-days", "0") == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0] == "Estimated HbA1c (rolling 30-day window)"
    # cabecera + 2 puntos
    assert len(lines) == 4


def test_admin_commands_require_admin(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register", "--full-name", "Ana Pérez", "--city", "Rosario")
    assert _run(db, "ana", "admin-search", "Ana") == cli.EXIT_ACCESS_DENIED

    # Primer admin: autoasignación permitida.
    assert _run(db, "root", "set-role", "root", "admin") == 0
    # Con un admin existente, un paciente no puede escalar.
    assert _run(db, "ana", "set-role", "ana", "admin") == cli.EXIT_ACCESS_DENIED
    capsys.readouterr()

    assert _run(db, "root", "admin-search", "pérez") == 0
    out = capsys.readouterr().out
    assert "1 result(s)" in out
    assert "Rosario" in out

    patient = SQLiteStore(db).patient_for_user("ana")
    assert patient is not None
    assert _run(db, "root", "admin-view", str(patient.patient_id)) == 0
    assert "Total readings: 0" in capsys.readouterr().out


def test_export_writes_workbook(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    _run(db, "ana", "add", "150", "--at", "2025-01-01T08:00")

    captured: dict[str, Any] = {}

    def _write_patient_xlsx(readings_df: Any, series_df: Any, out_path: Path, _: Any) -> None:
        captured["rows"] = len(readings_df)
        captured["points"] = len(series_df)
        captured["out_path"] = out_path

    monkeypatch.setattr(cli, "write_patient_xlsx", _write_patient_xlsx)
    code = _run(
        db, "ana", "export", "--range-days", "0", "--out-dir", str(tmp_path / "out")
    )
    assert code == 0
    assert captured["rows"] == 1
    assert captured["points"] == 1
    out_path = captured["out_path"]
    assert out_path.parent == tmp_path / "out"
    assert out_path.name.startswith("glucose_DIB-")


def test_delete_account_needs_confirmation(tmp_path: Path) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    assert _run(db, "ana", "delete-account") == cli.EXIT_INPUT_ERROR
    assert SQLiteStore(db).patient_for_user("ana") is not None
    assert _run(db, "ana", "delete-account", "--yes") == 0
    assert SQLiteStore(db).patient_for_user("ana") is None


def test_register_again_keeps_fields_not_passed(tmp_path: Path) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register", "--full-name", "Ana", "--city", "Lahore", "--age", "40")
    assert _run(db, "ana", "register", "--mobile", "555") == 0

    store = SQLiteStore(db)
    patient = store.patient_for_user("ana")
    assert patient is not None
    d = store.load_demographics(patient.patient_id)
    assert (d.full_name, d.mobile, d.city, d.age) == ("Ana", "555", "Lahore", 40)

    # Un valor vacío borra el campo.
    _run(db, "ana", "register", "--city", "")
    assert store.load_demographics(patient.patient_id).city is None
    assert store.load_demographics(patient.patient_id).full_name == "Ana"


def test_summary_daily_prints_one_row_per_day(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    _run(db, "ana", "config", "--local-tz", "UTC")
    _run(db, "ana", "add", "100", "--at", "2025-03-01T08:00")
    _run(db, "ana", "add", "111", "--at", "2025-03-01T20:00")
    _run(db, "ana", "add", "90", "--at", "2025-03-02T08:00")
    capsys.readouterr()

    assert _run(db, "ana", "summary", "--range-days", "0", "--daily") == 0
    out = capsys.readouterr().out
    assert "Total readings: 3" in out
    assert "glucose_count" in out
    assert "105.5" in out
    daily_rows = [line for line in out.splitlines() if "/03/2025" in line]
    assert len(daily_rows) == 2


def test_config_saves_window_and_time_zone(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "ana", "register")
    assert (
        _run(db, "ana", "config", "--window-days", "60", "--local-tz", "America/Lima")
        == 0
    )
    out = capsys.readouterr().out
    assert "OK: Config saved" in out
    assert "window_days: 60" in out

    config = SQLiteStore(db).load_config()
    assert config.window_days == 60
    assert config.local_tz == "America/Lima"

    # Hora local de Lima (UTC-5) se guarda en UTC.
    _run(db, "ana", "add", "120", "--at", "2025-03-01T08:30")
    store = SQLiteStore(db)
    patient = store.patient_for_user("ana")
    assert patient is not None
    [stored] = store.list_readings(patient.patient_id)
    assert stored.timestamp == datetime(2025, 3, 1, 13, 30, tzinfo=tz.UTC)
    capsys.readouterr()

    assert _run(db, "ana", "readings", "--range-days", "0") == 0
    assert "01/03/2025 08:30" in capsys.readouterr().out

    assert _run(db, "ana", "series", "--range-days", "0") == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0] == "Estimated HbA1c (rolling 60-day window)"


def test_config_rejects_bad_values(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    assert _run(db, "ana", "config", "--local-tz", "Mars/Olympus") == cli.EXIT_INPUT_ERROR
    assert _run(db, "ana", "config", "--window-days", "0") == cli.EXIT_INPUT_ERROR
    assert _run(db, "ana", "config", "--fields", "glucose,bogus") == cli.EXIT_INPUT_ERROR
    assert "unknown time zone" in capsys.readouterr().out
    assert SQLiteStore(db).load_config().window_days == 30


def test_admin_view_unknown_patient_is_not_found(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.sqlite3"
    _run(db, "root", "set-role", "root", "admin")
    capsys.readouterr()
    assert _run(db, "root", "admin-view", "999") == cli.EXIT_NOT_FOUND
    out = capsys.readouterr().out
    assert "Error: patient 999 not found" in out
    assert "Total readings" not in out
