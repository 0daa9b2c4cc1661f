"""Contexto explícito de sesión (usuario, rol, paciente) para los handlers."""

from __future__ import annotations

from dataclasses import dataclass

from glucose_portal.model import Patient
from glucose_portal.storage import SQLiteStore


class NotRegistered(LookupError):
    """The user has no patient record yet."""


class AccessDenied(PermissionError):
    """The user's role does not allow the action."""


@dataclass(frozen=True)
class Session:
    """Who is acting, resolved once per request."""

    user_id: str
    role: str
    patient: Patient | None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def open_session(store: SQLiteStore, user_id: str, email: str = "") -> Session:
    """Resolve role and patient record for ``user_id``.

    Raises:
        ValueError: If ``user_id`` is blank.
    """
    if not user_id.strip():
        raise ValueError("A user id is required.")
    role = store.ensure_profile(user_id, email)
    return Session(user_id=user_id, role=role, patient=store.patient_for_user(user_id))


def require_patient(session: Session) -> Patient:
    """Patient of the session or NotRegistered."""
    if session.patient is None:
        raise NotRegistered(
            f"User {session.user_id} is not registered as a patient. "
            "Run 'register' first."
        )
    return session.patient


def require_admin(session: Session) -> None:
    """Raise AccessDenied unless the session belongs to an admin."""
    if not session.is_admin:
        raise AccessDenied(f"User {session.user_id} is not an admin.")
