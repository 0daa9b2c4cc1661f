"""Modelos tipados para lecturas de glucosa, pacientes y estimaciones."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Tag(str, Enum):
    """Context label of a reading (filtering only)."""

    FASTING = "fasting"
    PREMEAL = "premeal"
    POSTMEAL = "postmeal"
    BEDTIME = "bedtime"
    EXERCISE = "exercise"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str | None) -> Tag:
        """Tag desde texto guardado; desconocido o vacío -> OTHER."""
        if raw is None:
            return cls.OTHER
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.OTHER


class Unit(str, Enum):
    """Input unit selector of the add-reading form."""

    MGDL = "mgdl"
    MMOLL = "mmol/L"


@dataclass(frozen=True)
class Reading:
    """One glucose measurement, always stored in mg/dL."""

    timestamp: datetime
    value_mgdl: int
    tag: Tag = Tag.OTHER
    note: str | None = None
    reading_id: int | None = None


@dataclass(frozen=True)
class OverallEstimate:
    """Mean glucose and derived HbA1c; NaN when there is no data."""

    mean_mgdl: float
    a1c_percent: float
    count: int


@dataclass(frozen=True)
class A1cPoint:
    """One point of the rolling HbA1c series."""

    time: datetime
    a1c_percent: float


@dataclass(frozen=True)
class Patient:
    """Patient record linked to a user id."""

    patient_id: int
    user_id: str
    patient_code: str


@dataclass(frozen=True)
class Demographics:
    """Datos demográficos opcionales del paciente."""

    full_name: str | None = None
    mobile: str | None = None
    city: str | None = None
    age: int | None = None
    gender: str | None = None


@dataclass(frozen=True)
class PatientRow:
    """Admin search result row."""

    patient_id: int
    patient_code: str
    full_name: str | None
    city: str | None
