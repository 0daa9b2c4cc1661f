from __future__ import annotations

from pathlib import Path

import pytest

from glucose_portal.session import (
    AccessDenied,
    NotRegistered,
    open_session,
    require_admin,
    require_patient,
)
from glucose_portal.storage import SQLiteStore


def test_open_session_unregistered_user(tmp_path: Path) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    session = open_session(store, "ana", "ana@example.com")
    assert session.role == "patient"
    assert session.patient is None
    with pytest.raises(NotRegistered, match="register"):
        require_patient(session)
    with pytest.raises(AccessDenied):
        require_admin(session)


def test_open_session_registered_patient(tmp_path: Path) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    patient = store.register_patient("ana")
    session = open_session(store, "ana")
    assert require_patient(session) == patient
    assert session.is_admin is False


def test_open_session_admin(tmp_path: Path) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    store.set_role("root", "admin")
    session = open_session(store, "root")
    assert session.is_admin
    require_admin(session)


def test_open_session_requires_user_id(tmp_path: Path) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    with pytest.raises(ValueError, match="user id"):
        open_session(store, "  ")
