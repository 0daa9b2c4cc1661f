"""Persistencia SQLite: configuración, perfiles, pacientes y lecturas."""

from __future__ import annotations

import json
import logging
import secrets
import sqlite3
import string
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from dateutil import parser, tz

from glucose_portal.model import Demographics, Patient, PatientRow, Reading, Tag

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    role TEXT NOT NULL DEFAULT 'patient',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL UNIQUE,
    patient_code TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS patient_demographics (
    patient_id INTEGER PRIMARY KEY,
    full_name TEXT,
    mobile TEXT,
    city TEXT,
    age INTEGER,
    gender TEXT,
    FOREIGN KEY(patient_id) REFERENCES patients(id)
);

CREATE TABLE IF NOT EXISTS glucose_readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    patient_id INTEGER NOT NULL,
    datetime_utc TEXT NOT NULL,
    mgdl INTEGER NOT NULL,
    tag TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(patient_id) REFERENCES patients(id)
);

CREATE INDEX IF NOT EXISTS idx_glucose_readings_patient_time
ON glucose_readings(patient_id, datetime_utc);
"""

ROLES: tuple[str, ...] = ("patient", "admin")
PATIENT_CODE_PREFIX = "DIB-"
_CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class AppConfig:
    """Configuracion persistida de la app."""

    export_dir: str
    range_days: int
    window_days: int
    local_tz: str
    selected_fields: list[str]


class SQLiteStore:
    """Repositorio SQLite para el portal."""

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Apply lightweight schema migrations."""
        reading_cols = {
            row["name"] for row in conn.execute("PRAGMA table_info(glucose_readings)")
        }
        if "note" not in reading_cols:
            conn.execute("ALTER TABLE glucose_readings ADD COLUMN note TEXT")

        profile_cols = {
            row["name"] for row in conn.execute("PRAGMA table_info(profiles)")
        }
        if "email" not in profile_cols:
            conn.execute("ALTER TABLE profiles ADD COLUMN email TEXT")

    # -- configuracion -----------------------------------------------------

    def load_config(self) -> AppConfig:
        """Devuelve configuracion guardada o defaults."""
        defaults = {
            "export_dir": "",
            "range_days": "90",
            "window_days": "30",
            "local_tz": "",
            "selected_fields": json.dumps(_default_fields()),
        }
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value FROM app_config").fetchall()
        values = {row["key"]: row["value"] for row in rows}
        merged = {**defaults, **values}
        return AppConfig(
            export_dir=merged["export_dir"],
            range_days=_parse_int(merged["range_days"], 90),
            window_days=_parse_int(merged["window_days"], 30),
            local_tz=merged["local_tz"],
            selected_fields=_parse_json_list(merged["selected_fields"]),
        )

    def save_config(self, config: AppConfig) -> None:
        """Guarda la configuracion en tabla key/value."""
        payload = {
            "export_dir": config.export_dir,
            "range_days": str(config.range_days),
            "window_days": str(config.window_days),
            "local_tz": config.local_tz,
            "selected_fields": json.dumps(config.selected_fields),
        }
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                payload.items(),
            )
            conn.commit()

    # -- perfiles ----------------------------------------------------------

    def ensure_profile(self, user_id: str, email: str = "") -> str:
        """Create the profile on first sight and return its role."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO profiles(user_id, email, role, created_at)
                VALUES (?, ?, 'patient', ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, email or None, _now_iso()),
            )
            if email:
                conn.execute(
                    "UPDATE profiles SET email = ? WHERE user_id = ?",
                    (email, user_id),
                )
            conn.commit()
        return self.role_for(user_id)

    def role_for(self, user_id: str) -> str:
        """Role of a user; ``patient`` when there is no profile."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT role FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None or row["role"] not in ROLES:
            return "patient"
        return str(row["role"])

    def set_role(self, user_id: str, role: str) -> None:
        """Change a user's role (``patient`` or ``admin``)."""
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        self.ensure_profile(user_id)
        with self._connect() as conn:
            conn.execute(
                "UPDATE profiles SET role = ? WHERE user_id = ?", (role, user_id)
            )
            conn.commit()
        logger.info("Role of %s set to %s", user_id, role)

    def has_admin(self) -> bool:
        """True when at least one admin profile exists."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM profiles WHERE role = 'admin' LIMIT 1"
            ).fetchone()
        return row is not None

    # -- pacientes ---------------------------------------------------------

    def patient_for_user(self, user_id: str) -> Patient | None:
        """Patient linked to the user, if registered."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, user_id, patient_code FROM patients WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return _row_to_patient(row) if row is not None else None

    def patient_by_id(self, patient_id: int) -> Patient | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, user_id, patient_code FROM patients WHERE id = ?",
                (patient_id,),
            ).fetchone()
        return _row_to_patient(row) if row is not None else None

    def register_patient(self, user_id: str) -> Patient:
        """Create the patient record with a fresh code (idempotent)."""
        existing = self.patient_for_user(user_id)
        if existing is not None:
            return existing
        self.ensure_profile(user_id)
        with self._connect() as conn:
            code = _unique_patient_code(conn)
            cur = conn.execute(
                """
                INSERT INTO patients(user_id, patient_code, created_at)
                VALUES (?, ?, ?)
                """,
                (user_id, code, _now_iso()),
            )
            conn.commit()
            patient_id = int(cur.lastrowid)
        logger.info("Registered patient %s for user %s", code, user_id)
        return Patient(patient_id=patient_id, user_id=user_id, patient_code=code)

    def save_demographics(self, patient_id: int, demographics: Demographics) -> None:
        """Upsert de datos demográficos."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO patient_demographics(
                    patient_id, full_name, mobile, city, age, gender
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(patient_id) DO UPDATE SET
                    full_name=excluded.full_name,
                    mobile=excluded.mobile,
                    city=excluded.city,
                    age=excluded.age,
                    gender=excluded.gender
                """,
                (
                    patient_id,
                    demographics.full_name,
                    demographics.mobile,
                    demographics.city,
                    demographics.age,
                    demographics.gender,
                ),
            )
            conn.commit()

    def load_demographics(self, patient_id: int) -> Demographics:
        """Demographics of a patient; all-None when never saved."""
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT full_name, mobile, city, age, gender
                FROM patient_demographics WHERE patient_id = ?
                """,
                (patient_id,),
            ).fetchone()
        if row is None:
            return Demographics()
        return Demographics(
            full_name=row["full_name"],
            mobile=row["mobile"],
            city=row["city"],
            age=row["age"],
            gender=row["gender"],
        )

    def search_patients(self, term: str) -> list[PatientRow]:
        """Patients whose code or full name contains ``term`` (case-insensitive).

        Code matches come first; name-only matches are appended, merged by
        patient id. ``%`` and ``_`` in ``term`` match literally.
        """
        pattern = f"%{_escape_like(term.strip())}%"
        with self._connect() as conn:
            by_code = conn.execute(
                """
                SELECT p.id, p.patient_code, d.full_name, d.city
                FROM patients p
                LEFT JOIN patient_demographics d ON d.patient_id = p.id
                WHERE p.patient_code LIKE ? ESCAPE '\\'
                ORDER BY p.id
                """,
                (pattern,),
            ).fetchall()
            by_name = conn.execute(
                """
                SELECT d.patient_id, p.patient_code, d.full_name, d.city
                FROM patient_demographics d
                LEFT JOIN patients p ON p.id = d.patient_id
                WHERE d.full_name LIKE ? ESCAPE '\\'
                ORDER BY d.patient_id
                """,
                (pattern,),
            ).fetchall()

        merged: dict[int, PatientRow] = {}
        for row in by_code:
            merged[int(row["id"])] = PatientRow(
                patient_id=int(row["id"]),
                patient_code=row["patient_code"],
                full_name=row["full_name"],
                city=row["city"],
            )
        for row in by_name:
            pid = int(row["patient_id"])
            if pid in merged:
                continue
            merged[pid] = PatientRow(
                patient_id=pid,
                patient_code=row["patient_code"] or "",
                full_name=row["full_name"],
                city=row["city"],
            )
        return list(merged.values())

    # -- lecturas ----------------------------------------------------------

    def add_reading(self, patient_id: int, reading: Reading) -> int:
        """Insert a normalized reading and return its id."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO glucose_readings(
                    patient_id, datetime_utc, mgdl, tag, note, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    patient_id,
                    _to_utc_iso(reading.timestamp),
                    int(reading.value_mgdl),
                    reading.tag.value,
                    reading.note,
                    _now_iso(),
                ),
            )
            conn.commit()
            reading_id = int(cur.lastrowid)
        logger.debug("Stored reading %s for patient %s", reading_id, patient_id)
        return reading_id

    def list_readings(self, patient_id: int, ascending: bool = True) -> list[Reading]:
        """Readings of a patient ordered by time."""
        order = "ASC" if ascending else "DESC"
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, datetime_utc, mgdl, tag, note
                FROM glucose_readings
                WHERE patient_id = ?
                ORDER BY datetime_utc {order}, id {order}
                """,
                (patient_id,),
            ).fetchall()
        return [_row_to_reading(row) for row in rows]

    def delete_reading(self, reading_id: int, patient_id: int) -> bool:
        """Delete a reading only if it belongs to ``patient_id``."""
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM glucose_readings WHERE id = ? AND patient_id = ?",
                (reading_id, patient_id),
            )
            conn.commit()
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted reading %s of patient %s", reading_id, patient_id)
        return deleted

    def delete_account(self, user_id: str) -> bool:
        """Borra perfil, paciente, demografía y lecturas del usuario."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM patients WHERE user_id = ?", (user_id,)
            ).fetchone()
            if row is not None:
                pid = int(row["id"])
                conn.execute(
                    "DELETE FROM glucose_readings WHERE patient_id = ?", (pid,)
                )
                conn.execute(
                    "DELETE FROM patient_demographics WHERE patient_id = ?", (pid,)
                )
                conn.execute("DELETE FROM patients WHERE id = ?", (pid,))
            cur = conn.execute("DELETE FROM profiles WHERE user_id = ?", (user_id,))
            conn.commit()
            removed = row is not None or cur.rowcount > 0
        if removed:
            logger.info("Deleted account %s", user_id)
        return removed


def _default_fields() -> list[str]:
    return ["datetime", "glucose_mg_dl", "tag", "note"]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _parse_json_list(raw: str) -> list[str]:
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        return _default_fields()
    if not isinstance(parsed, list):
        return _default_fields()
    out = [str(item) for item in parsed]
    return out or _default_fields()


def _parse_int(raw: str, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _now_iso() -> str:
    return datetime.now(tz=tz.UTC).isoformat(timespec="seconds")


def _to_utc_iso(value: datetime) -> str:
    # Naive -> se asume UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz.UTC)
    return value.astimezone(tz.UTC).isoformat(timespec="seconds")


def _row_to_reading(row: sqlite3.Row) -> Reading:
    return Reading(
        timestamp=parser.isoparse(row["datetime_utc"]).astimezone(tz.UTC),
        value_mgdl=int(row["mgdl"]),
        tag=Tag.parse(row["tag"]),
        note=row["note"],
        reading_id=int(row["id"]),
    )


def _row_to_patient(row: sqlite3.Row) -> Patient:
    return Patient(
        patient_id=int(row["id"]),
        user_id=str(row["user_id"]),
        patient_code=str(row["patient_code"]),
    )


def generate_patient_code() -> str:
    """Random code like ``DIB-9Q2X7F``."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"{PATIENT_CODE_PREFIX}{suffix}"


def _unique_patient_code(conn: sqlite3.Connection) -> str:
    while True:
        code = generate_patient_code()
        taken = conn.execute(
            "SELECT 1 FROM patients WHERE patient_code = ?", (code,)
        ).fetchone()
        if taken is None:
            return code
