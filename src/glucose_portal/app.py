"""App Kivy del portal: tablero, alta de lecturas, listado, gráficos y admin."""

from __future__ import annotations

import traceback
from datetime import datetime
from pathlib import Path

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
from glucose_portal.frames import readings_to_frame, series_to_frame
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
from glucose_portal.storage import SQLiteStore

UNIT_LABELS: dict[str, str] = {"mg/dL": "mgdl", "mmol/L": "mmol/L"}
RANGE_LABELS: dict[str, int] = {
    "30d": 30,
    "60d": 60,
    "90d": 90,
    "180d": 180,
    "1y": 365,
    "All": 0,
}


def range_label(days: int) -> str:
    """Texto del rango activo ("Last 90 days" / "All time")."""
    if days == 0:
        return "All time"
    return f"Last {days} days"


def dashboard_text(readings: list[Reading], range_days: int) -> str:
    """KPI block shown on the dashboard tab."""
    est = overall_estimate(readings)
    return "\n".join(
        [
            range_label(range_days),
            f"Mean glucose (mg/dL): {format_mean(est.mean_mgdl)}",
            f"Estimated HbA1c: {format_number(est.a1c_percent, 2)}% "
            f"({a1c_status(est.a1c_percent)})",
            f"Total readings: {est.count}",
        ]
    )


def run_app() -> int:
    """Lanza la app Kivy."""
    from kivy.app import App
    from kivy.core.window import Window
    from kivy.resources import resource_find
    from kivy.uix.boxlayout import BoxLayout
    from kivy.uix.button import Button
    from kivy.uix.label import Label
    from kivy.uix.spinner import Spinner
    from kivy.uix.tabbedpanel import TabbedPanel, TabbedPanelItem
    from kivy.uix.textinput import TextInput

    class GlucosePortalApp(App):
        """Main Kivy app."""

        def __init__(self, **kwargs: object) -> None:
            super().__init__(**kwargs)
            self.store = SQLiteStore(Path.cwd() / "glucose_portal.sqlite3")
            self.app_config = self.store.load_config()
            self.local_tz = tz.gettz(self.app_config.local_tz) or tz.tzlocal()
            self.session: Session | None = None
            self.readings: list[Reading] = []
            self.range_days = self.app_config.range_days
            self.status: Label | None = None
            self.kpis: Label | None = None
            self.readings_view: TextInput | None = None
            self.series_view: TextInput | None = None
            self.admin_view: TextInput | None = None
            self._preview_font = resource_find("data/fonts/RobotoMono-Regular.ttf")

        def build(self) -> BoxLayout:
            Window.bind(on_key_down=self._on_key_down)

            root = BoxLayout(orientation="vertical", spacing=8, padding=10)

            login = BoxLayout(orientation="horizontal", size_hint_y=None, height=40)
            login.add_widget(Label(text="User", size_hint_x=0.15))
            self.user_input = TextInput(multiline=False)
            login.add_widget(self.user_input)
            login_btn = Button(text="Sign in", size_hint_x=0.2)
            register_btn = Button(text="Register", size_hint_x=0.2)
            login_btn.bind(on_press=self._on_login)
            register_btn.bind(on_press=self._on_register)
            login.add_widget(login_btn)
            login.add_widget(register_btn)
            root.add_widget(login)

            self.status = Label(text="Not signed in", size_hint_y=None, height=30)
            root.add_widget(self.status)

            panel = TabbedPanel(do_default_tab=False)
            panel.add_widget(self._dashboard_tab())
            panel.add_widget(self._add_tab())
            panel.add_widget(self._readings_tab())
            panel.add_widget(self._graphs_tab())
            panel.add_widget(self._admin_tab())
            root.add_widget(panel)
            return root

        def _preview(self) -> TextInput:
            box = TextInput(readonly=True, text="", multiline=True, do_wrap=False)
            if self._preview_font:
                box.font_name = self._preview_font
            return box

        def _range_bar(self) -> BoxLayout:
            bar = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
            for label, days in RANGE_LABELS.items():
                btn = Button(text=label)
                btn.bind(on_press=lambda _btn, d=days: self._set_range(d))
                bar.add_widget(btn)
            return bar

        def _dashboard_tab(self) -> TabbedPanelItem:
            tab = TabbedPanelItem(text="Dashboard")
            box = BoxLayout(orientation="vertical", spacing=8, padding=8)
            box.add_widget(self._range_bar())
            self.kpis = Label(text="", halign="left", valign="top")
            box.add_widget(self.kpis)
            tab.add_widget(box)
            return tab

        def _add_tab(self) -> TabbedPanelItem:
            tab = TabbedPanelItem(text="Add Sugar")
            box = BoxLayout(orientation="vertical", spacing=8, padding=8)

            def row(label: str, widget: object) -> BoxLayout:
                line = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
                line.add_widget(Label(text=label, size_hint_x=0.3))
                line.add_widget(widget)
                return line

            self.dt_input = TextInput(multiline=False, hint_text="YYYY-MM-DDTHH:MM")
            self.value_input = TextInput(multiline=False, hint_text="e.g., 154")
            self.unit_spinner = Spinner(text="mg/dL", values=list(UNIT_LABELS))
            self.tag_spinner = Spinner(
                text=Tag.FASTING.value, values=[t.value for t in Tag]
            )
            self.note_input = TextInput(
                multiline=False, hint_text="e.g., rice lunch, 30m walk"
            )
            box.add_widget(row("Date & time", self.dt_input))
            box.add_widget(row("Value", self.value_input))
            box.add_widget(row("Unit", self.unit_spinner))
            box.add_widget(row("Time tag", self.tag_spinner))
            box.add_widget(row("Note (optional)", self.note_input))
            box.add_widget(Label(text="Accepted range: 20-800 mg/dL"))

            actions = BoxLayout(orientation="horizontal", size_hint_y=None, height=40)
            clear_btn = Button(text="Clear")
            save_btn = Button(text="Save")
            clear_btn.bind(on_press=self._clear_form)
            save_btn.bind(on_press=self._on_save_reading)
            actions.add_widget(clear_btn)
            actions.add_widget(save_btn)
            box.add_widget(actions)
            tab.add_widget(box)
            self._clear_form()
            return tab

        def _readings_tab(self) -> TabbedPanelItem:
            tab = TabbedPanelItem(text="Readings")
            box = BoxLayout(orientation="vertical", spacing=8, padding=8)
            box.add_widget(self._range_bar())
            actions = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
            self.delete_input = TextInput(multiline=False, hint_text="Reading id")
            delete_btn = Button(text="Delete reading")
            refresh_btn = Button(text="Refresh")
            delete_btn.bind(on_press=self._on_delete)
            refresh_btn.bind(on_press=lambda *_args: self._reload())
            actions.add_widget(self.delete_input)
            actions.add_widget(delete_btn)
            actions.add_widget(refresh_btn)
            box.add_widget(actions)
            self.readings_view = self._preview()
            box.add_widget(self.readings_view)
            tab.add_widget(box)
            return tab

        def _graphs_tab(self) -> TabbedPanelItem:
            tab = TabbedPanelItem(text="Graphs")
            box = BoxLayout(orientation="vertical", spacing=8, padding=8)
            box.add_widget(
                Label(
                    text=(
                        "Estimated HbA1c over time "
                        f"(rolling {self.app_config.window_days}-day window)."
                    ),
                    size_hint_y=None,
                    height=30,
                )
            )
            type_bar = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
            self.type_spinner = Spinner(
                text="all", values=["all", *[t.value for t in Tag]]
            )
            self.type_spinner.bind(text=lambda *_args: self._refresh_views())
            type_bar.add_widget(Label(text="Type:", size_hint_x=0.2))
            type_bar.add_widget(self.type_spinner)
            box.add_widget(type_bar)
            self.series_view = self._preview()
            box.add_widget(self.series_view)
            tab.add_widget(box)
            return tab

        def _admin_tab(self) -> TabbedPanelItem:
            tab = TabbedPanelItem(text="Admin")
            box = BoxLayout(orientation="vertical", spacing=8, padding=8)
            search = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
            self.search_input = TextInput(
                multiline=False, hint_text="e.g., DIB-9Q2X7F or full name"
            )
            search_btn = Button(text="Search", size_hint_x=0.2)
            search_btn.bind(on_press=self._on_search)
            search.add_widget(self.search_input)
            search.add_widget(search_btn)
            box.add_widget(search)
            open_row = BoxLayout(orientation="horizontal", size_hint_y=None, height=36)
            self.open_input = TextInput(multiline=False, hint_text="Patient id")
            open_btn = Button(text="Open patient", size_hint_x=0.3)
            open_btn.bind(on_press=self._on_open_patient)
            open_row.add_widget(self.open_input)
            open_row.add_widget(open_btn)
            box.add_widget(open_row)
            self.admin_view = self._preview()
            box.add_widget(self.admin_view)
            tab.add_widget(box)
            return tab

        def _on_key_down(
            self,
            _window: object,
            keycode: int,
            _scancode: int,
            _text: str,
            _modifiers: list[str],
        ) -> bool:
            # Esc: salir de fullscreen o cerrar app.
            if keycode != 27:
                return False
            if Window.fullscreen:
                Window.fullscreen = False
            else:
                self.stop()
            return True

        def _set_status(self, text: str) -> None:
            if self.status is not None:
                self.status.text = text

        def _on_login(self, _: object) -> None:
            try:
                self.session = open_session(self.store, self.user_input.text.strip())
            except ValueError as exc:
                self._set_status(str(exc))
                return
            if self.session.patient is None and not self.session.is_admin:
                self._set_status("Signed in. Press Register to create your patient ID.")
                return
            self._reload()

        def _on_register(self, _: object) -> None:
            if self.session is None:
                self._on_login(_)
            if self.session is None:
                return
            patient = self.store.register_patient(self.session.user_id)
            self.session = open_session(self.store, self.session.user_id)
            self._set_status(f"Registered. Patient ID {patient.patient_code}")
            self._reload()

        def _reload(self) -> None:
            if self.session is None or self.session.patient is None:
                self.readings = []
            else:
                self.readings = self.store.list_readings(
                    self.session.patient.patient_id
                )
                self._set_status(
                    f"{self.session.user_id} - {self.session.patient.patient_code}"
                )
            self._refresh_views()

        def _set_range(self, days: int) -> None:
            self.range_days = days if days in RANGE_PRESETS else 90
            self._refresh_views()

        def _refresh_views(self) -> None:
            visible = filter_readings(
                self.readings, range_days=self.range_days, local_tz=self.local_tz
            )
            if self.kpis is not None:
                self.kpis.text = dashboard_text(visible, self.range_days)
            if self.readings_view is not None:
                df = readings_to_frame(visible, self.local_tz).iloc[::-1]
                fields = ["reading_id", *self.app_config.selected_fields]
                self.readings_view.text = render_table(filter_columns(df, fields))
            if self.series_view is not None:
                by_type = filter_readings(
                    self.readings,
                    range_days=self.range_days,
                    tag=self.type_spinner.text,
                    local_tz=self.local_tz,
                )
                points = rolling_a1c_series(
                    by_type, window_days=self.app_config.window_days
                )
                self.series_view.text = render_table(
                    series_to_frame(points, self.local_tz)
                )

        def _clear_form(self, *_: object) -> None:
            self.dt_input.text = datetime.now(tz=self.local_tz).strftime(
                "%Y-%m-%dT%H:%M"
            )
            self.value_input.text = ""
            self.unit_spinner.text = "mg/dL"
            self.tag_spinner.text = Tag.FASTING.value
            self.note_input.text = ""

        def _on_save_reading(self, _: object) -> None:
            try:
                patient = require_patient(self._require_session())
                reading = normalize_reading(
                    self.value_input.text,
                    UNIT_LABELS[self.unit_spinner.text],
                    self.dt_input.text,
                    self.tag_spinner.text,
                    self.note_input.text,
                    local_tz=self.local_tz,
                )
                self.store.add_reading(patient.patient_id, reading)
            except (IngestError, NotRegistered) as exc:
                self._set_status(str(exc))
                return
            except Exception as exc:
                self._show_error("guardar", exc)
                return
            self._clear_form()
            self._reload()
            self._set_status(f"Saved {reading.value_mgdl} mg/dL")

        def _on_delete(self, _: object) -> None:
            try:
                patient = require_patient(self._require_session())
                reading_id = int(self.delete_input.text.strip())
            except NotRegistered as exc:
                self._set_status(str(exc))
                return
            except ValueError:
                self._set_status("Enter the id of the reading to delete.")
                return
            if not self.store.delete_reading(reading_id, patient.patient_id):
                self._set_status(f"Reading {reading_id} not found.")
                return
            self.delete_input.text = ""
            self._reload()
            self._set_status(f"Reading {reading_id} deleted.")

        def _on_search(self, _: object) -> None:
            try:
                require_admin(self._require_session())
            except (AccessDenied, NotRegistered) as exc:
                self._set_status(str(exc))
                return
            rows = self.store.search_patients(self.search_input.text)
            lines = [f"{len(rows)} result(s)"]
            lines.extend(
                f"{r.patient_id}  {r.patient_code or '—'}  "
                f"{r.full_name or '—'}  {r.city or '—'}"
                for r in rows
            )
            if self.admin_view is not None:
                self.admin_view.text = "\n".join(lines)

        def _on_open_patient(self, _: object) -> None:
            try:
                require_admin(self._require_session())
                patient_id = int(self.open_input.text.strip())
            except (AccessDenied, NotRegistered) as exc:
                self._set_status(str(exc))
                return
            except ValueError:
                self._set_status("Enter a patient id.")
                return
            if self.store.patient_by_id(patient_id) is None:
                self._set_status(f"Patient {patient_id} not found.")
                if self.admin_view is not None:
                    self.admin_view.text = ""
                return
            readings = self.store.list_readings(patient_id, ascending=False)
            if self.admin_view is not None:
                self.admin_view.text = (
                    dashboard_text(readings, 0)
                    + "\n\n"
                    + render_table(readings_to_frame(readings, self.local_tz))
                )

        def _require_session(self) -> Session:
            if self.session is None:
                raise NotRegistered("Sign in first.")
            return self.session

        def _show_error(self, action: str, exc: Exception) -> None:
            error_type = type(exc).__name__
            self._set_status(f"Error al {action} ({error_type}): {exc}")
            if self.readings_view is not None:
                self.readings_view.text = traceback.format_exc()

    GlucosePortalApp().run()
    return 0
