"""CLI del portal: registro, lecturas, HbA1c estimada, exportación y admin."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Any

from dateutil import tz

from glucose_portal.display import filter_columns, format_mean, render_table
from glucose_portal.estimator import (
    RANGE_PRESETS,
    a1c_status,
    filter_readings,
    format_number,
    overall_estimate,
    rolling_a1c_series,
)
from glucose_portal.excel_writer import ExcelLayout, write_patient_xlsx
from glucose_portal.frames import (
    READING_COLUMNS,
    daily_glucose_summary,
    readings_to_frame,
    series_to_frame,
)
from glucose_portal.ingest import IngestError, normalize_reading
from glucose_portal.model import Reading, Tag
from glucose_portal.session import (
    AccessDenied,
    NotRegistered,
    Session,
    open_session,
    require_admin,
    require_patient,
)
from glucose_portal.storage import ROLES, AppConfig, SQLiteStore

logger = logging.getLogger(__name__)

EXIT_INPUT_ERROR = 2
EXIT_NOT_REGISTERED = 3
EXIT_ACCESS_DENIED = 4
EXIT_NOT_FOUND = 5

_TAG_CHOICES = [t.value for t in Tag]
_GENDERS = ["male", "female", "other"]


def _add_filter_args(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--range-days",
        type=int,
        choices=RANGE_PRESETS,
        default=None,
        help="Ventana hacia atrás en días (0 = todo). Default: configuracion.",
    )
    sub.add_argument("--start", type=date.fromisoformat, help="Inicio YYYY-MM-DD.")
    sub.add_argument("--end", type=date.fromisoformat, help="Fin YYYY-MM-DD.")
    sub.add_argument("--tag", choices=["all", *_TAG_CHOICES], default="all")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Portal de glucosa: lecturas y HbA1c estimada."
    )
    parser.add_argument(
        "--db",
        default=str(Path.cwd() / "glucose_portal.sqlite3"),
        help="Archivo SQLite (default: ./glucose_portal.sqlite3).",
    )
    parser.add_argument("--user", required=True, help="Id del usuario que actúa.")
    parser.add_argument("--email", default="", help="Email del usuario.")
    parser.add_argument("--verbose", action="store_true", help="Logging DEBUG.")
    subs = parser.add_subparsers(dest="command", required=True)

    reg = subs.add_parser("register", help="Crear/actualizar registro de paciente.")
    reg.add_argument("--full-name", default=None)
    reg.add_argument("--mobile", default=None)
    reg.add_argument("--city", default=None)
    reg.add_argument("--age", type=int, default=None)
    reg.add_argument("--gender", choices=_GENDERS, default=None)

    add = subs.add_parser("add", help="Agregar una lectura.")
    add.add_argument("value", help="Valor numérico.")
    add.add_argument("--unit", choices=["mgdl", "mmol/L", "mmoll"], default="mgdl")
    add.add_argument(
        "--at", default=None, help="Fecha/hora (ISO, hora local). Default: ahora."
    )
    add.add_argument("--tag", choices=_TAG_CHOICES, default=Tag.FASTING.value)
    add.add_argument("--note", default="")

    readings = subs.add_parser("readings", help="Listar lecturas.")
    _add_filter_args(readings)

    delete = subs.add_parser("delete", help="Borrar una lectura propia.")
    delete.add_argument("reading_id", type=int)

    summary = subs.add_parser("summary", help="Media y HbA1c estimada.")
    _add_filter_args(summary)
    summary.add_argument(
        "--daily", action="store_true", help="Agregar resumen por día (min/max/media)."
    )

    series = subs.add_parser("series", help="Serie de HbA1c con ventana móvil.")
    _add_filter_args(series)
    series.add_argument("--window-days", type=int, default=None)

    export = subs.add_parser("export", help="Exportar Excel para el médico.")
    _add_filter_args(export)
    export.add_argument("--out-dir", default=None)

    search = subs.add_parser("admin-search", help="Buscar pacientes (admin).")
    search.add_argument("term", nargs="?", default="")

    view = subs.add_parser("admin-view", help="Lecturas de un paciente (admin).")
    view.add_argument("patient_id", type=int)

    role = subs.add_parser("set-role", help="Cambiar rol de un usuario (admin).")
    role.add_argument("target_user")
    role.add_argument("role", choices=ROLES)

    drop = subs.add_parser("delete-account", help="Borrar la cuenta y sus datos.")
    drop.add_argument("--yes", action="store_true", help="Confirmar borrado.")

    conf = subs.add_parser("config", help="Ver o cambiar la configuración.")
    conf.add_argument("--export-dir", default=None)
    conf.add_argument("--range-days", type=int, choices=RANGE_PRESETS, default=None)
    conf.add_argument("--window-days", type=int, default=None)
    conf.add_argument(
        "--local-tz", default=None, help="Zona IANA, p. ej. America/Lima ('' = sistema)."
    )
    conf.add_argument(
        "--fields", default=None, help="Columnas del listado, separadas por coma."
    )

    return parser.parse_args(argv)


def _local_tz(config: AppConfig) -> tzinfo:
    if config.local_tz:
        zone = tz.gettz(config.local_tz)
        if zone is not None:
            return zone
        logger.warning("Unknown time zone %r, using local zone", config.local_tz)
    return tz.tzlocal()


def _filtered(
    readings: list[Reading], ns: argparse.Namespace, config: AppConfig
) -> list[Reading]:
    range_days = ns.range_days if ns.range_days is not None else config.range_days
    return filter_readings(
        readings,
        range_days=range_days,
        start=ns.start,
        end=ns.end,
        tag=ns.tag,
        local_tz=_local_tz(config),
    )


def _cmd_register(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = store.register_patient(session.user_id)
    # Solo se pisan los campos pasados; "" borra el valor guardado.
    changes: dict[str, Any] = {}
    for field in ("full_name", "mobile", "city"):
        raw = getattr(ns, field)
        if raw is not None:
            changes[field] = raw.strip() or None
    if ns.age is not None:
        changes["age"] = ns.age
    if ns.gender is not None:
        changes["gender"] = ns.gender
    current = store.load_demographics(patient.patient_id)
    store.save_demographics(patient.patient_id, replace(current, **changes))
    print(f"OK: Patient ID {patient.patient_code}")
    return 0


def _cmd_add(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    zone = _local_tz(store.load_config())
    at = ns.at or datetime.now(tz=zone).isoformat(timespec="minutes")
    reading = normalize_reading(ns.value, ns.unit, at, ns.tag, ns.note, local_tz=zone)
    reading_id = store.add_reading(patient.patient_id, reading)
    print(f"OK: Reading {reading_id} saved ({reading.value_mgdl} mg/dL)")
    return 0


def _cmd_readings(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    config = store.load_config()
    readings = _filtered(store.list_readings(patient.patient_id), ns, config)
    _print_readings(readings, config)
    return 0


def _cmd_delete(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    if not store.delete_reading(ns.reading_id, patient.patient_id):
        print(f"Error: reading {ns.reading_id} not found")
        return EXIT_NOT_FOUND
    print(f"OK: Reading {ns.reading_id} deleted")
    return 0


def _cmd_summary(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    config = store.load_config()
    readings = _filtered(store.list_readings(patient.patient_id), ns, config)
    _print_summary(readings)
    if ns.daily:
        daily = daily_glucose_summary(readings_to_frame(readings, _local_tz(config)))
        print("")
        print(render_table(daily))
    return 0


def _cmd_series(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    config = store.load_config()
    window = ns.window_days if ns.window_days is not None else config.window_days
    readings = _filtered(store.list_readings(patient.patient_id), ns, config)
    points = rolling_a1c_series(readings, window_days=window)
    print(f"Estimated HbA1c (rolling {window}-day window)")
    print(render_table(series_to_frame(points, _local_tz(config))))
    return 0


def _cmd_export(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    patient = require_patient(session)
    config = store.load_config()
    zone = _local_tz(config)
    readings = _filtered(store.list_readings(patient.patient_id), ns, config)
    points = rolling_a1c_series(readings, window_days=config.window_days)

    out_dir_raw = ns.out_dir or config.export_dir
    out_dir = Path(out_dir_raw).expanduser() if out_dir_raw else Path.cwd() / "exports"
    ts = datetime.now(tz=zone).strftime("%Y-%m-%d_%H-%M-%S")
    out_path = out_dir / f"glucose_{patient.patient_code}_{ts}.xlsx"
    write_patient_xlsx(
        readings_to_frame(readings, zone),
        series_to_frame(points, zone),
        out_path,
        ExcelLayout(),
    )
    print(f"OK: Readings exported: {len(readings)}")
    print(f"OK: Output: {out_path}")
    return 0


def _cmd_admin_search(
    store: SQLiteStore, session: Session, ns: argparse.Namespace
) -> int:
    require_admin(session)
    rows = store.search_patients(ns.term)
    print(f"{len(rows)} result(s)")
    for row in rows:
        print(
            f"{row.patient_id}\t{row.patient_code or '—'}\t"
            f"{row.full_name or '—'}\t{row.city or '—'}"
        )
    return 0


def _cmd_admin_view(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    require_admin(session)
    if store.patient_by_id(ns.patient_id) is None:
        print(f"Error: patient {ns.patient_id} not found")
        return EXIT_NOT_FOUND
    config = store.load_config()
    readings = store.list_readings(ns.patient_id, ascending=False)
    demographics = store.load_demographics(ns.patient_id)
    print(f"Patient {ns.patient_id}: {demographics.full_name or '—'}")
    _print_summary(readings)
    _print_readings(readings, config)
    return 0


def _cmd_set_role(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    # El primer admin puede autoasignarse el rol.
    bootstrap = not store.has_admin() and ns.target_user == session.user_id
    if not bootstrap:
        require_admin(session)
    store.set_role(ns.target_user, ns.role)
    print(f"OK: {ns.target_user} is now {ns.role}")
    return 0


def _cmd_delete_account(
    store: SQLiteStore, session: Session, ns: argparse.Namespace
) -> int:
    if not ns.yes:
        print("Refusing to delete the account without --yes. This cannot be undone.")
        return EXIT_INPUT_ERROR
    store.delete_account(session.user_id)
    print(f"OK: Account {session.user_id} deleted")
    return 0


def _cmd_config(store: SQLiteStore, session: Session, ns: argparse.Namespace) -> int:
    config = store.load_config()
    changes: dict[str, Any] = {}
    if ns.export_dir is not None:
        changes["export_dir"] = ns.export_dir.strip()
    if ns.range_days is not None:
        changes["range_days"] = ns.range_days
    if ns.window_days is not None:
        if ns.window_days < 1:
            print("Error: --window-days must be at least 1")
            return EXIT_INPUT_ERROR
        changes["window_days"] = ns.window_days
    if ns.local_tz is not None:
        zone_name = ns.local_tz.strip()
        if zone_name and tz.gettz(zone_name) is None:
            print(f"Error: unknown time zone {zone_name!r}")
            return EXIT_INPUT_ERROR
        changes["local_tz"] = zone_name
    if ns.fields is not None:
        fields = [f.strip() for f in ns.fields.split(",") if f.strip()]
        unknown = [f for f in fields if f not in READING_COLUMNS]
        if unknown or not fields:
            print(f"Error: unknown fields {unknown}; choose from {READING_COLUMNS}")
            return EXIT_INPUT_ERROR
        changes["selected_fields"] = fields

    if changes:
        config = replace(config, **changes)
        store.save_config(config)
        logger.info("Config updated by %s: %s", session.user_id, sorted(changes))
        print("OK: Config saved")
    print(f"export_dir: {config.export_dir or '(./exports)'}")
    print(f"range_days: {config.range_days}")
    print(f"window_days: {config.window_days}")
    print(f"local_tz: {config.local_tz or '(system)'}")
    print(f"selected_fields: {','.join(config.selected_fields)}")
    return 0


def _print_summary(readings: list[Reading]) -> None:
    est = overall_estimate(readings)
    print(f"Mean glucose (mg/dL): {format_mean(est.mean_mgdl)}")
    print(f"Estimated HbA1c (%): {format_number(est.a1c_percent, 2)}")
    print(f"Status: {a1c_status(est.a1c_percent)}")
    print(f"Total readings: {est.count}")


def _print_readings(readings: list[Reading], config: AppConfig) -> None:
    df = readings_to_frame(readings, _local_tz(config))
    fields = ["reading_id", *config.selected_fields]
    print(render_table(filter_columns(df, fields)))


_COMMANDS: dict[str, Callable[[SQLiteStore, Session, argparse.Namespace], int]] = {
    "register": _cmd_register,
    "add": _cmd_add,
    "readings": _cmd_readings,
    "delete": _cmd_delete,
    "summary": _cmd_summary,
    "series": _cmd_series,
    "export": _cmd_export,
    "admin-search": _cmd_admin_search,
    "admin-view": _cmd_admin_view,
    "set-role": _cmd_set_role,
    "delete-account": _cmd_delete_account,
    "config": _cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    """Run the portal CLI.

    Returns:
        Exit code (0 on success).
    """
    ns = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if ns.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = SQLiteStore(Path(ns.db).expanduser().resolve())
    session = open_session(store, ns.user, ns.email)
    logger.debug("Session %s (role=%s)", session.user_id, session.role)

    try:
        return _COMMANDS[ns.command](store, session, ns)
    except IngestError as exc:
        print(f"Error: {exc}")
        return EXIT_INPUT_ERROR
    except NotRegistered as exc:
        print(f"Error: {exc}")
        return EXIT_NOT_REGISTERED
    except AccessDenied as exc:
        print(f"Error: {exc}")
        return EXIT_ACCESS_DENIED
