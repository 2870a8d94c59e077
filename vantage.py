# Vantage: year-at-a-glance planner (PySide6)
# - Whole year on one screen: 12 month rows x 31 day cells.
# - Click a day or drag across days to plan a date range; click an event bar to edit/delete.
# - Colored categories with a legend; event bars stack in a stable order per day.
# - Edits show up immediately and sync in the background to a PostgREST data API,
#   or to local CSV files when no API URL is configured.

from __future__ import annotations
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
import calendar
import configparser
import csv
import itertools
import logging
import math
import os
import sys
import threading
import uuid

import requests
from PySide6.QtCore import (
    Qt, QDate, QEvent, QObject, QPointF, QRectF, QRunnable, QThreadPool, Signal, Slot
)
from PySide6.QtGui import QAction, QBrush, QColor, QFont, QIcon, QKeySequence, QPainter, QPen, QPixmap
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout, QLabel,
    QLineEdit, QPlainTextEdit, QComboBox, QDateEdit, QDialog, QDialogButtonBox, QPushButton,
    QMessageBox, QSpinBox, QDoubleSpinBox, QToolBar, QToolButton, QScrollArea, QTabWidget,
    QToolTip, QMenu, QColorDialog
)

APP_DIR = Path(__file__).resolve().parent
PREF_PATH = APP_DIR / "pref.ini"
DEFAULT_DATA_DIR = APP_DIR / "data"

logger = logging.getLogger(__name__)

MONTHS = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

CLICK_TOLERANCE_PX = 5.0
MAX_EVENT_FRACTION = 0.75   # share of a day cell event bars may fill; the rest stays free for dragging
MIN_EVENT_FRACTION = 0.2
MAX_EVENT_FRACTION_CAP = 0.95
TEMP_ID_PREFIX = "tmp-"
LOCAL_USER_ID = "local"
DUPLICATE_KEY_CODE = "23505"  # postgres unique_violation

# Closed category palette: token -> fill color
PALETTE: Dict[str, str] = {
    "red": "#EF4444",
    "orange": "#F97316",
    "amber": "#FBBF24",
    "green": "#22C55E",
    "emerald": "#10B981",
    "teal": "#2DD4BF",
    "cyan": "#06B6D4",
    "blue": "#3B82F6",
    "indigo": "#6366F1",
    "purple": "#A855F7",
    "pink": "#EC4899",
    "gray": "#475569",
    "black": "#1E293B",
}
DEFAULT_COLOR_TOKEN = "neutral"
NEUTRAL_HEX = "#9CA3AF"
# tokens written by the old web client
LEGACY_COLOR_TOKENS = {
    "bg-slate-600": "gray",
    "bg-slate-800": "black",
    "bg-gray-400": DEFAULT_COLOR_TOKEN,
}

EVENT_FIELDS = ("title", "start_date", "end_date", "category_id", "description")


class ValidationError(ValueError):
    """Rejected user input; raised before any state changes."""


class StoreError(RuntimeError):
    """A store call failed (HTTP error, transport error, unreadable file)."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code


# ---------------------------------------------------------------------------
# Calendar days
# ---------------------------------------------------------------------------

def parse_iso_day(text: str) -> date:
    """'2026-02-05' (or a timestamp starting with it) -> date(2026, 2, 5)."""
    return date.fromisoformat(str(text).strip()[:10])


def as_day(value) -> date:
    """Normalize to a plain calendar day, dropping any time-of-day component."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, QDate):
        return date(value.year(), value.month(), value.day())
    if isinstance(value, str):
        return parse_iso_day(value)
    raise TypeError(f"Not a calendar day: {value!r}")


def iso_day(value) -> str:
    return as_day(value).isoformat()


def to_qdate(value) -> QDate:
    d = as_day(value)
    return QDate(d.year, d.month, d.day)


def days_in_month(year: int, month_index: int) -> int:
    if not 0 <= month_index < 12:
        raise ValueError(f"month_index out of range: {month_index}")
    return calendar.monthrange(year, month_index + 1)[1]


def normalize_range(a, b) -> Tuple[date, date]:
    a, b = as_day(a), as_day(b)
    return (b, a) if a > b else (a, b)


def year_bounds(year: int) -> Tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def iter_year_days(year: int) -> Iterator[date]:
    for month_index in range(12):
        for day_num in range(1, days_in_month(year, month_index) + 1):
            yield date(year, month_index + 1, day_num)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Category:
    id: str
    name: str
    color: str


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    start_date: date
    end_date: date
    category_id: str
    description: Optional[str] = None

    def __post_init__(self):
        start = as_day(self.start_date)
        end = as_day(self.end_date)
        if end < start:
            end = start
        object.__setattr__(self, "start_date", start)
        object.__setattr__(self, "end_date", end)


@dataclass(frozen=True)
class YearSnapshot:
    year: int
    categories: Tuple[Category, ...] = ()
    events: Tuple[CalendarEvent, ...] = ()

    def category(self, category_id: str) -> Optional[Category]:
        for cat in self.categories:
            if cat.id == category_id:
                return cat
        return None

    def event(self, event_id: str) -> Optional[CalendarEvent]:
        for ev in self.events:
            if ev.id == event_id:
                return ev
        return None


def covers_day(event: CalendarEvent, day) -> bool:
    d = as_day(day)
    return event.start_date <= d <= event.end_date


def span_days(event: CalendarEvent) -> int:
    return (event.end_date - event.start_date).days + 1


def overlaps_year(event: CalendarEvent, year: int) -> bool:
    first, last = year_bounds(year)
    return event.start_date <= last and event.end_date >= first


def is_temporary_id(record_id: str) -> bool:
    return str(record_id).startswith(TEMP_ID_PREFIX)


def normalize_color_token(raw: str) -> str:
    token = (raw or "").strip().lower()
    if token in LEGACY_COLOR_TOKENS:
        return LEGACY_COLOR_TOKENS[token]
    if token.startswith("bg-"):
        parts = token.split("-")
        if len(parts) >= 2 and parts[1] in PALETTE:
            return parts[1]
    return token


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

def events_on_day(events: Sequence[CalendarEvent], day) -> List[CalendarEvent]:
    """Events covering `day`, stacked by id so the order never depends on insertion order."""
    d = as_day(day)
    return sorted((ev for ev in events if covers_day(ev, d)), key=lambda ev: ev.id)


def layout_year(snapshot: YearSnapshot) -> Dict[date, List[CalendarEvent]]:
    """Every day of snapshot.year (month by month) -> events covering it, in stacking order."""
    result: Dict[date, List[CalendarEvent]] = {d: [] for d in iter_year_days(snapshot.year)}
    first, last = year_bounds(snapshot.year)
    for ev in sorted(snapshot.events, key=lambda e: e.id):
        start = max(ev.start_date, first)
        end = min(ev.end_date, last)
        if start > end:
            continue
        for ordinal in range(start.toordinal(), end.toordinal() + 1):
            result[date.fromordinal(ordinal)].append(ev)
    return result


@dataclass(frozen=True)
class CellPartition:
    segments: Tuple[Tuple[float, float], ...]   # (offset, height) per covering event, top down
    free: Tuple[float, float]                   # (offset, height) of the always-clickable rest


def clamp_event_fraction(value: float) -> float:
    return max(MIN_EVENT_FRACTION, min(MAX_EVENT_FRACTION_CAP, float(value)))


def cell_segments(count: int, height: float, max_fraction: float = MAX_EVENT_FRACTION) -> CellPartition:
    height = max(0.0, float(height))
    if count <= 0 or height <= 0:
        return CellPartition((), (0.0, height))
    primary = height * clamp_event_fraction(max_fraction)
    share = primary / count
    segments = tuple((i * share, share) for i in range(count))
    return CellPartition(segments, (primary, height - primary))


def color_of(categories: Sequence[Category], category_id: str) -> str:
    for cat in categories:
        if cat.id == category_id:
            return cat.color
    return DEFAULT_COLOR_TOKEN


def token_to_qcolor(token: str) -> QColor:
    return QColor(PALETTE.get(normalize_color_token(token), NEUTRAL_HEX))


def qcolor_to_hex(c: QColor) -> str:
    return c.name(QColor.NameFormat.HexRgb)


def hex_to_qcolor(s: str, fallback: str = "#000000") -> QColor:
    c = QColor(s)
    if not c.isValid():
        c = QColor(fallback)
    return c


def color_icon(token: str, size: int = 12) -> QIcon:
    pix = QPixmap(size, size)
    pix.fill(Qt.GlobalColor.transparent)
    p = QPainter(pix)
    p.setRenderHint(QPainter.RenderHint.Antialiasing, True)
    p.setPen(Qt.PenStyle.NoPen)
    p.setBrush(QBrush(token_to_qcolor(token)))
    p.drawEllipse(0, 0, size - 1, size - 1)
    p.end()
    return QIcon(pix)


# ---------------------------------------------------------------------------
# Gestures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Armed:
    anchor: date
    origin: Tuple[float, float]


@dataclass(frozen=True)
class Dragging:
    anchor: date
    current: date


GestureState = Union[Idle, Armed, Dragging]


@dataclass(frozen=True)
class DaySelection:
    day: date


@dataclass(frozen=True)
class RangeSelection:
    start: date
    end: date


@dataclass(frozen=True)
class EventSelection:
    event_id: str


Selection = Union[DaySelection, RangeSelection, EventSelection]


class GestureMachine:
    """Turns pointer input over day cells into selections.

    A primary press arms the machine on a day. Entering another day starts a
    drag; releasing resolves to a single day (armed, pointer still within the
    click tolerance) or to a normalized range (dragging). Anything else ends
    the gesture without a selection.
    """

    def __init__(self, click_tolerance: float = CLICK_TOLERANCE_PX):
        self.click_tolerance = float(click_tolerance)
        self.state: GestureState = Idle()

    @property
    def active(self) -> bool:
        return not isinstance(self.state, Idle)

    def pointer_down(self, day, pos: Tuple[float, float], primary: bool = True) -> bool:
        if not primary:
            return False
        if self.active:
            logger.debug("pointer_down ignored while %s", self.state)
            return False
        self.state = Armed(as_day(day), (float(pos[0]), float(pos[1])))
        return True

    def pointer_enter(self, day) -> bool:
        d = as_day(day)
        st = self.state
        if isinstance(st, Armed):
            if d == st.anchor:
                return False
            self.state = Dragging(st.anchor, d)
            return True
        if isinstance(st, Dragging):
            if d == st.current:
                return False
            self.state = Dragging(st.anchor, d)
            return True
        return False

    def pointer_up(self, pos: Tuple[float, float]) -> Optional[Selection]:
        st = self.state
        self.state = Idle()
        if isinstance(st, Armed):
            moved = math.hypot(float(pos[0]) - st.origin[0], float(pos[1]) - st.origin[1])
            if moved < self.click_tolerance:
                return DaySelection(st.anchor)
            return None
        if isinstance(st, Dragging):
            start, end = normalize_range(st.anchor, st.current)
            return RangeSelection(start, end)
        return None

    def cancel(self) -> bool:
        if not self.active:
            return False
        logger.debug("gesture cancelled in %s", self.state)
        self.state = Idle()
        return True

    def event_clicked(self, event_id: str) -> Optional[EventSelection]:
        if self.active:
            return None
        return EventSelection(event_id)

    def preview_range(self) -> Optional[Tuple[date, date]]:
        st = self.state
        if isinstance(st, Armed):
            return st.anchor, st.anchor
        if isinstance(st, Dragging):
            return normalize_range(st.anchor, st.current)
        return None


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserHandle:
    id: str
    access_token: str = ""


def category_from_row(row: dict) -> Category:
    return Category(id=str(row["id"]), name=row.get("name") or "", color=normalize_color_token(row.get("color", "")))


def event_from_row(row: dict) -> CalendarEvent:
    return CalendarEvent(
        id=str(row["id"]),
        title=row.get("title") or "",
        start_date=parse_iso_day(row["start_date"]),
        end_date=parse_iso_day(row["end_date"]),
        category_id=str(row.get("category_id") or ""),
        description=row.get("description") or None,
    )


def event_fields_to_row(fields: dict) -> dict:
    row = {}
    for name, value in fields.items():
        if name not in EVENT_FIELDS:
            raise ValidationError(f"Unknown event field: {name}")
        if name in ("start_date", "end_date"):
            value = iso_day(value)
        row[name] = value
    return row


class PostgrestClient:
    """Minimal PostgREST table client (select / insert / update / delete)."""

    def __init__(self, base_url: str, access_token: str, session: Optional[requests.Session] = None,
                 timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, table: str, params: Optional[List[Tuple[str, str]]] = None,
                 json_body=None, prefer: Optional[str] = None) -> list:
        url = f"{self.base_url}/{table}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        logger.debug("%s %s %s", method, url, params or "")
        try:
            resp = self.session.request(method, url, headers=headers, params=params, json=json_body,
                                        timeout=self.timeout)
        except requests.RequestException as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc
        if resp.status_code >= 400:
            code = None
            message = resp.text
            try:
                body = resp.json()
                code = body.get("code")
                message = body.get("message") or message
            except ValueError:
                pass
            raise StoreError(f"{resp.status_code} from {table}: {message}", status=resp.status_code, code=code)
        if resp.status_code == 204 or not resp.content:
            return []
        try:
            data = resp.json()
        except ValueError as exc:
            raise StoreError(f"Invalid JSON from {table}: {resp.text}") from exc
        return data if isinstance(data, list) else [data]

    def select(self, table: str, filters: Sequence[Tuple[str, str, str]] = (),
               order: Optional[Tuple[str, bool]] = None, columns: str = "*") -> List[dict]:
        params = [("select", columns)]
        for column, op, value in filters:
            params.append((column, f"{op}.{value}"))
        if order:
            column, ascending = order
            params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
        return self._request("GET", table, params=params)

    def insert(self, table: str, row: dict) -> dict:
        rows = self._request("POST", table, json_body=row, prefer="return=representation")
        if not rows:
            raise StoreError(f"Insert into {table} returned no record")
        return rows[0]

    def update(self, table: str, row_id: str, fields: dict) -> None:
        self._request("PATCH", table, params=[("id", f"eq.{row_id}")], json_body=fields)

    def delete(self, table: str, row_id: str) -> None:
        self._request("DELETE", table, params=[("id", f"eq.{row_id}")])


def get_api_client(user: UserHandle, base_url: str, session: Optional[requests.Session] = None) -> PostgrestClient:
    if not user.access_token:
        raise StoreError("No access token found")
    return PostgrestClient(base_url, user.access_token, session=session)


class Backend:
    """Store interface used by MutationCoordinator. Calls run off the UI thread."""

    def ensure_user(self, user: UserHandle) -> None:
        raise NotImplementedError

    def load_categories(self, user: UserHandle) -> List[Category]:
        raise NotImplementedError

    def load_events(self, user: UserHandle, year: int) -> List[CalendarEvent]:
        raise NotImplementedError

    def create_category(self, user: UserHandle, name: str, color: str) -> Category:
        raise NotImplementedError

    def delete_category(self, user: UserHandle, category_id: str) -> None:
        raise NotImplementedError

    def create_event(self, user: UserHandle, event: CalendarEvent) -> CalendarEvent:
        raise NotImplementedError

    def update_event(self, user: UserHandle, event_id: str, fields: dict) -> None:
        raise NotImplementedError

    def delete_event(self, user: UserHandle, event_id: str) -> None:
        raise NotImplementedError


class PostgrestBackend(Backend):
    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.session = session

    def _client(self, user: UserHandle) -> PostgrestClient:
        return get_api_client(user, self.base_url, session=self.session)

    def ensure_user(self, user):
        pg = self._client(user)
        if pg.select("users", [("id", "eq", user.id)], columns="id"):
            return
        try:
            pg.insert("users", {"id": user.id})
        except StoreError as exc:
            # created by a concurrent request
            if exc.code != DUPLICATE_KEY_CODE:
                raise
            logger.debug("user %s already exists", user.id)

    def load_categories(self, user):
        rows = self._client(user).select("categories", order=("created_at", True))
        return [category_from_row(r) for r in rows]

    def load_events(self, user, year):
        first, last = year_bounds(year)
        rows = self._client(user).select(
            "events",
            [("start_date", "lte", iso_day(last)), ("end_date", "gte", iso_day(first))],
            order=("start_date", True),
        )
        return [event_from_row(r) for r in rows]

    def create_category(self, user, name, color):
        row = self._client(user).insert("categories", {"user_id": user.id, "name": name, "color": color})
        return category_from_row(row)

    def delete_category(self, user, category_id):
        self._client(user).delete("categories", category_id)

    def create_event(self, user, event):
        row = event_fields_to_row({
            "category_id": event.category_id,
            "title": event.title,
            "start_date": event.start_date,
            "end_date": event.end_date,
            "description": event.description,
        })
        row["user_id"] = user.id
        return event_from_row(self._client(user).insert("events", row))

    def update_event(self, user, event_id, fields):
        self._client(user).update("events", event_id, event_fields_to_row(fields))

    def delete_event(self, user, event_id):
        self._client(user).delete("events", event_id)


CATEGORY_COLUMNS = ["id", "user_id", "name", "color", "created_at"]
EVENT_COLUMNS = ["id", "user_id", "category_id", "title", "start_date", "end_date", "description"]


class CsvBackend(Backend):
    """Offline store: categories.csv / events.csv in data_dir."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.categories_path = self.data_dir / "categories.csv"
        self.events_path = self.data_dir / "events.csv"
        self._lock = threading.Lock()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _read(self, path: Path) -> List[dict]:
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8", newline="") as f:
                return list(csv.DictReader(f))
        except OSError as exc:
            raise StoreError(f"Failed to read {path.name}: {exc}") from exc

    def _write(self, path: Path, fieldnames: List[str], rows: List[dict]):
        tmp = path.with_suffix(".tmp")
        try:
            with tmp.open("w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)
            tmp.replace(path)
        except OSError as exc:
            raise StoreError(f"Failed to write {path.name}: {exc}") from exc

    def ensure_user(self, user):
        pass

    def load_categories(self, user):
        with self._lock:
            rows = [r for r in self._read(self.categories_path) if r.get("user_id") == user.id]
        rows.sort(key=lambda r: r.get("created_at") or "")
        result: List[Category] = []
        for row in rows:
            try:
                result.append(category_from_row(row))
            except KeyError:
                logger.warning("Skipping malformed category row: %r", row)
        return result

    def load_events(self, user, year):
        with self._lock:
            rows = [r for r in self._read(self.events_path) if r.get("user_id") == user.id]
        result: List[CalendarEvent] = []
        for row in rows:
            try:
                ev = event_from_row(row)
            except (KeyError, ValueError):
                logger.warning("Skipping malformed event row: %r", row)
                continue
            if overlaps_year(ev, year):
                result.append(ev)
        result.sort(key=lambda e: e.start_date)
        return result

    def create_category(self, user, name, color):
        row = {
            "id": uuid.uuid4().hex, "user_id": user.id, "name": name, "color": color,
            "created_at": datetime.now().isoformat(timespec="microseconds"),
        }
        with self._lock:
            rows = self._read(self.categories_path)
            rows.append(row)
            self._write(self.categories_path, CATEGORY_COLUMNS, rows)
        return category_from_row(row)

    def delete_category(self, user, category_id):
        with self._lock:
            cats = [r for r in self._read(self.categories_path)
                    if not (r.get("id") == category_id and r.get("user_id") == user.id)]
            self._write(self.categories_path, CATEGORY_COLUMNS, cats)
            # same as ON DELETE CASCADE on events.category_id
            events = [r for r in self._read(self.events_path)
                      if not (r.get("category_id") == category_id and r.get("user_id") == user.id)]
            self._write(self.events_path, EVENT_COLUMNS, events)

    def create_event(self, user, event):
        row = event_fields_to_row({
            "category_id": event.category_id,
            "title": event.title,
            "start_date": event.start_date,
            "end_date": event.end_date,
            "description": event.description or "",
        })
        row.update({"id": uuid.uuid4().hex, "user_id": user.id})
        with self._lock:
            rows = self._read(self.events_path)
            rows.append(row)
            self._write(self.events_path, EVENT_COLUMNS, rows)
        return event_from_row(row)

    def update_event(self, user, event_id, fields):
        changes = event_fields_to_row(fields)
        if "description" in changes and changes["description"] is None:
            changes["description"] = ""
        with self._lock:
            rows = self._read(self.events_path)
            hit = False
            for row in rows:
                if row.get("id") == event_id and row.get("user_id") == user.id:
                    row.update(changes)
                    hit = True
            if not hit:
                logger.debug("update_event: no row %s", event_id)
                return
            self._write(self.events_path, EVENT_COLUMNS, rows)

    def delete_event(self, user, event_id):
        with self._lock:
            rows = self._read(self.events_path)
            kept = [r for r in rows if not (r.get("id") == event_id and r.get("user_id") == user.id)]
            if len(kept) != len(rows):
                self._write(self.events_path, EVENT_COLUMNS, kept)


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------

class JobSignals(QObject):
    finished = Signal(int, object)
    failed = Signal(int, object)


class RemoteJob(QRunnable):
    """One store call on the thread pool; outcome is reported through signals."""

    def __init__(self, key: int, label: str, fn: Callable[[], object]):
        super().__init__()
        self.key = key
        self.label = label
        self.fn = fn
        self.signals = JobSignals()
        self.setAutoDelete(False)

    def run(self):
        try:
            result = self.fn()
        except Exception as exc:
            self.signals.failed.emit(self.key, exc)
        else:
            self.signals.finished.emit(self.key, result)


class ThreadPoolRunner(QObject):
    """Runs store calls on a QThreadPool; callbacks fire on this object's (the UI) thread."""

    def __init__(self, pool: Optional[QThreadPool] = None, parent=None):
        super().__init__(parent)
        self.pool = pool or QThreadPool.globalInstance()
        self._keys = itertools.count(1)
        self._jobs: Dict[int, Tuple[RemoteJob, Callable, Callable]] = {}

    def submit(self, label: str, fn: Callable[[], object],
               on_success: Callable[[object], None], on_error: Callable[[Exception], None]):
        key = next(self._keys)
        job = RemoteJob(key, label, fn)
        job.signals.finished.connect(self._job_finished)
        job.signals.failed.connect(self._job_failed)
        self._jobs[key] = (job, on_success, on_error)
        self.pool.start(job)

    @Slot(int, object)
    def _job_finished(self, key: int, result):
        entry = self._jobs.pop(key, None)
        if entry is not None:
            entry[1](result)

    @Slot(int, object)
    def _job_failed(self, key: int, exc):
        entry = self._jobs.pop(key, None)
        if entry is None:
            return
        job, _, on_error = entry
        logger.debug("job %r failed: %s", job.label, exc)
        on_error(exc)

    def pending_count(self) -> int:
        return len(self._jobs)

    def wait_for_done(self, msecs: int = 3000) -> bool:
        return self.pool.waitForDone(msecs)


# ---------------------------------------------------------------------------
# Mutation coordinator
# ---------------------------------------------------------------------------

@dataclass
class PendingOp:
    op_id: str
    kind: str
    target_id: str
    status: str = "pending"   # pending | done | failed
    error: str = ""
    rollback: Optional[Callable[[], None]] = field(default=None, repr=False)


class MutationCoordinator(QObject):
    """Owns the YearSnapshot for the selected year.

    Every mutation is applied to the local snapshot first and then sent to the
    backend through the runner. Temporary ids of records whose create is still
    in flight are swapped for the stored ids once the backend answers; calls
    that need the stored id wait for it. A failed write is rolled back locally
    and reported through syncFailed.
    """

    snapshotChanged = Signal(object)
    loadingChanged = Signal(bool)
    syncFailed = Signal(str)

    def __init__(self, backend: Backend, year: int, user: Optional[UserHandle] = None, runner=None, parent=None):
        super().__init__(parent)
        self.backend = backend
        self.user = user
        self.runner = runner if runner is not None else ThreadPoolRunner(parent=self)
        self._snapshot = YearSnapshot(int(year))
        self._loading = False
        self._fetch_generation = 0
        self._op_ids = itertools.count(1)
        self.ledger: Dict[str, PendingOp] = {}
        self._id_map: Dict[str, str] = {}
        self._followups: Dict[str, List[Tuple[PendingOp, Callable[[str], None]]]] = {}
        self._landed: Dict[str, int] = {}   # stored id -> fetch generation current when its create landed

    # --- state ---
    @property
    def snapshot(self) -> YearSnapshot:
        return self._snapshot

    @property
    def year(self) -> int:
        return self._snapshot.year

    @property
    def loading(self) -> bool:
        return self._loading

    def _set_snapshot(self, snapshot: YearSnapshot):
        self._snapshot = snapshot
        self.snapshotChanged.emit(snapshot)

    def _set_loading(self, flag: bool):
        if self._loading != flag:
            self._loading = flag
            self.loadingChanged.emit(flag)

    def _has_user(self, action: str) -> bool:
        if self.user is None:
            logger.info("%s ignored: no signed-in user", action)
            return False
        return True

    def pending_ops(self) -> List[PendingOp]:
        return [op for op in self.ledger.values() if op.status == "pending"]

    def failed_ops(self) -> List[PendingOp]:
        return [op for op in self.ledger.values() if op.status == "failed"]

    def resolve_id(self, record_id: str) -> str:
        return self._id_map.get(record_id, record_id)

    # --- loading ---
    def set_user(self, user: Optional[UserHandle]):
        self.user = user
        if user is None:
            self._set_snapshot(YearSnapshot(self.year))
            return
        self.refresh()

    def set_year(self, year: int):
        year = int(year)
        snap = self._snapshot
        kept = tuple(ev for ev in snap.events if overlaps_year(ev, year))
        self._set_snapshot(YearSnapshot(year, snap.categories, kept))
        self.refresh()

    def refresh(self):
        if not self._has_user("refresh"):
            return
        # a reload replaces whatever the failed ops left behind
        self.clear_failed()
        self._fetch_generation += 1
        generation = self._fetch_generation
        year = self.year
        user = self.user
        backend = self.backend

        def fetch():
            return backend.load_categories(user), backend.load_events(user, year)

        self._set_loading(True)
        self.runner.submit(
            f"load {year}", fetch,
            lambda result: self._fetch_done(generation, year, result),
            lambda exc: self._fetch_failed(generation, year, exc),
        )

    def _fetch_done(self, generation: int, year: int, result):
        if generation != self._fetch_generation or year != self.year:
            logger.debug("dropping stale fetch for %s (generation %s)", year, generation)
            return
        categories, events = result
        snap = self._snapshot
        fetched_ids = {c.id for c in categories} | {e.id for e in events}

        # unsaved records, and records saved while this fetch was already reading
        def keep(record_id: str) -> bool:
            if self._unresolved(record_id):
                return True
            return self._landed.get(record_id, -1) >= generation and record_id not in fetched_ids

        local_cats = tuple(c for c in snap.categories if keep(c.id))
        local_events = tuple(e for e in snap.events if keep(e.id))
        self._landed.clear()
        fetched_events = tuple(e for e in events if overlaps_year(e, year))
        self._set_snapshot(YearSnapshot(year, tuple(categories) + local_cats, fetched_events + local_events))
        self._set_loading(False)
        logger.info("Loaded %d categories, %d events for %s", len(categories), len(fetched_events), year)

    def _fetch_failed(self, generation: int, year: int, exc: Exception):
        if generation != self._fetch_generation:
            return
        logger.error("Failed to load %s: %s", year, exc)
        self._set_loading(False)
        self.syncFailed.emit(f"Could not load {year}: {exc}")

    # --- ledger plumbing ---
    def _unresolved(self, record_id: str) -> bool:
        return is_temporary_id(record_id) and record_id not in self._id_map

    def _open_op(self, kind: str, target_id: str, rollback: Optional[Callable[[], None]] = None) -> PendingOp:
        op = PendingOp(op_id=f"op-{next(self._op_ids)}", kind=kind, target_id=target_id, rollback=rollback)
        self.ledger[op.op_id] = op
        return op

    def _op_done(self, op: PendingOp):
        op.status = "done"
        self.ledger.pop(op.op_id, None)

    def _op_failed(self, op: PendingOp, exc: Exception):
        op.status = "failed"
        op.error = str(exc)
        logger.warning("%s %s failed: %s", op.kind, op.target_id, exc)
        self._fail_dependents(op)
        if op.rollback is not None:
            op.rollback()
        self.syncFailed.emit(f"Could not save changes ({op.kind.replace('_', ' ')}): {exc}")

    def _fail_dependents(self, op: PendingOp):
        """Undo ops that were waiting on a failed create, newest first. They are never sent."""
        if not op.kind.startswith("create"):
            return
        for dependent, _ in reversed(self._followups.pop(op.target_id, [])):
            dependent.status = "failed"
            dependent.error = f"{op.kind} failed"
            self.ledger.pop(dependent.op_id, None)
            self._fail_dependents(dependent)
            if dependent.rollback is not None:
                dependent.rollback()

    def clear_failed(self):
        for op in self.failed_ops():
            self.ledger.pop(op.op_id, None)

    def _when_persisted(self, record_ids: Sequence[str], op: PendingOp, send: Callable[[Dict[str, str]], None]):
        """Call send({id: stored id}) once none of record_ids is waiting for its create."""
        for rid in record_ids:
            if self._unresolved(rid):
                self._followups.setdefault(rid, []).append(
                    (op, lambda _real, ids=record_ids: self._when_persisted(ids, op, send)))
                return
        send({rid: self.resolve_id(rid) for rid in record_ids})

    def _record_created(self, temp_id: str, real_id: str):
        self._id_map[temp_id] = real_id
        self._landed[real_id] = self._fetch_generation
        for _, callback in self._followups.pop(temp_id, []):
            callback(real_id)

    def _submit(self, op: PendingOp, label: str, fn: Callable[[], object],
                on_success: Optional[Callable[[object], None]] = None):
        def done(result):
            if on_success is not None:
                on_success(result)
            self._op_done(op)

        self.runner.submit(label, fn, done, lambda exc: self._op_failed(op, exc))

    # --- events ---
    def create_event(self, title: str, start, end, category_id: str, description: Optional[str] = None) -> Optional[str]:
        if not self._has_user("create_event"):
            return None
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title must not be empty")
        snap = self._snapshot
        if snap.category(category_id) is None:
            raise ValidationError(f"Unknown category: {category_id}")
        start_day = as_day(start)
        end_day = as_day(end)
        if end_day < start_day:
            end_day = start_day
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        event = CalendarEvent(temp_id, title, start_day, end_day, category_id, (description or "").strip() or None)
        self._set_snapshot(replace(snap, events=snap.events + (event,)))

        op = self._open_op("create_event", temp_id, rollback=lambda: self._drop_event(temp_id))
        user, backend = self.user, self.backend

        def send(ids):
            draft = replace(event, category_id=ids[category_id])

            def call():
                backend.ensure_user(user)
                return backend.create_event(user, draft)

            self._submit(op, "create event", call, lambda created: self._event_created(temp_id, created))

        self._when_persisted([category_id], op, send)
        return temp_id

    def _event_created(self, temp_id: str, created: CalendarEvent):
        snap = self._snapshot
        if snap.event(temp_id) is not None:
            # keep local field values; edits made meanwhile are queued as followups
            events = tuple(replace(e, id=created.id) if e.id == temp_id else e for e in snap.events)
            self._set_snapshot(replace(snap, events=events))
        self._record_created(temp_id, created.id)

    def update_event(self, event_id: str, **fields) -> None:
        if not self._has_user("update_event"):
            return
        unknown = set(fields) - set(EVENT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown event field(s): {', '.join(sorted(unknown))}")
        snap = self._snapshot
        current = snap.event(event_id)
        if current is None:
            logger.warning("update_event: %s is not in the %s snapshot", event_id, snap.year)
            return
        if "title" in fields:
            fields["title"] = (fields["title"] or "").strip()
            if not fields["title"]:
                raise ValidationError("Title must not be empty")
        if "category_id" in fields and snap.category(fields["category_id"]) is None:
            raise ValidationError(f"Unknown category: {fields['category_id']}")
        if "description" in fields:
            fields["description"] = (fields["description"] or "").strip() or None
        updated = replace(current, **fields)
        changes = {name: getattr(updated, name) for name in EVENT_FIELDS
                   if name in fields or getattr(updated, name) != getattr(current, name)}
        self._set_snapshot(replace(snap, events=tuple(updated if e.id == event_id else e for e in snap.events)))

        previous = {name: getattr(current, name) for name in changes}
        op = self._open_op("update_event", event_id, rollback=lambda: self._revert_fields(event_id, previous))
        user, backend = self.user, self.backend
        needed = [event_id]
        if "category_id" in changes:
            needed.append(changes["category_id"])

        def send(ids):
            remote = dict(changes)
            if "category_id" in remote:
                remote["category_id"] = ids[remote["category_id"]]
            self._submit(op, "update event", lambda: backend.update_event(user, ids[event_id], remote))

        self._when_persisted(needed, op, send)

    def delete_event(self, event_id: str) -> None:
        if not self._has_user("delete_event"):
            return
        snap = self._snapshot
        current = snap.event(event_id)
        if current is None:
            logger.warning("delete_event: %s is not in the %s snapshot", event_id, snap.year)
            return
        self._set_snapshot(replace(snap, events=tuple(e for e in snap.events if e.id != event_id)))

        op = self._open_op("delete_event", event_id, rollback=lambda: self._reinsert_events([current]))
        user, backend = self.user, self.backend
        self._when_persisted(
            [event_id], op,
            lambda ids: self._submit(op, "delete event", lambda: backend.delete_event(user, ids[event_id])),
        )

    def _drop_event(self, event_id: str):
        snap = self._snapshot
        event_id = self.resolve_id(event_id)
        if snap.event(event_id) is not None:
            self._set_snapshot(replace(snap, events=tuple(e for e in snap.events if e.id != event_id)))

    def _revert_fields(self, event_id: str, previous: dict):
        """Put back only the fields one update changed; later edits to other fields stay."""
        snap = self._snapshot
        real_id = self.resolve_id(event_id)
        current = snap.event(real_id)
        if current is None:
            return
        fields = dict(previous)
        if "category_id" in fields:
            fields["category_id"] = self.resolve_id(fields["category_id"])
        restored = replace(current, **fields)
        self._set_snapshot(replace(snap, events=tuple(restored if e.id == real_id else e for e in snap.events)))

    def _reinsert_events(self, events: Sequence[CalendarEvent]):
        snap = self._snapshot
        present = {e.id for e in snap.events}
        restored = []
        for ev in events:
            ev = replace(ev, id=self.resolve_id(ev.id), category_id=self.resolve_id(ev.category_id))
            if ev.id not in present and overlaps_year(ev, snap.year):
                restored.append(ev)
        if restored:
            self._set_snapshot(replace(snap, events=snap.events + tuple(restored)))

    # --- categories ---
    def create_category(self, name: str, color: str) -> Optional[str]:
        if not self._has_user("create_category"):
            return None
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name must not be empty")
        token = normalize_color_token(color)
        if token not in PALETTE:
            raise ValidationError(f"Unknown color: {color}")
        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        snap = self._snapshot
        self._set_snapshot(replace(snap, categories=snap.categories + (Category(temp_id, name, token),)))

        op = self._open_op("create_category", temp_id, rollback=lambda: self._drop_category(temp_id))
        user, backend = self.user, self.backend

        def call():
            backend.ensure_user(user)
            return backend.create_category(user, name, token)

        self._submit(op, "create category", call, lambda created: self._category_created(temp_id, created))
        return temp_id

    def _category_created(self, temp_id: str, created: Category):
        snap = self._snapshot
        if snap.category(temp_id) is not None:
            cats = tuple(replace(c, id=created.id) if c.id == temp_id else c for c in snap.categories)
            events = tuple(replace(e, category_id=created.id) if e.category_id == temp_id else e
                           for e in snap.events)
            self._set_snapshot(replace(snap, categories=cats, events=events))
        self._record_created(temp_id, created.id)

    def delete_category(self, category_id: str) -> None:
        if not self._has_user("delete_category"):
            return
        snap = self._snapshot
        cat = snap.category(category_id)
        if cat is None:
            logger.warning("delete_category: %s is not in the snapshot", category_id)
            return
        index = snap.categories.index(cat)
        removed = [e for e in snap.events if e.category_id == category_id]
        self._set_snapshot(replace(
            snap,
            categories=tuple(c for c in snap.categories if c.id != category_id),
            events=tuple(e for e in snap.events if e.category_id != category_id),
        ))

        def rollback():
            self._reinsert_category(cat, index)
            self._reinsert_events(removed)

        op = self._open_op("delete_category", category_id, rollback=rollback)
        user, backend = self.user, self.backend
        self._when_persisted(
            [category_id], op,
            lambda ids: self._submit(op, "delete category", lambda: backend.delete_category(user, ids[category_id])),
        )

    def _drop_category(self, category_id: str):
        snap = self._snapshot
        category_id = self.resolve_id(category_id)
        # stored events only point here through pending updates, which revert on their own
        self._set_snapshot(replace(
            snap,
            categories=tuple(c for c in snap.categories if c.id != category_id),
            events=tuple(e for e in snap.events
                         if not (e.category_id == category_id and is_temporary_id(e.id))),
        ))

    def _reinsert_category(self, cat: Category, index: int):
        snap = self._snapshot
        cat = replace(cat, id=self.resolve_id(cat.id))
        if snap.category(cat.id) is not None:
            return
        cats = list(snap.categories)
        cats.insert(min(index, len(cats)), cat)
        self._set_snapshot(replace(snap, categories=tuple(cats)))


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

COLOR_DEFAULTS: Dict[str, str] = {
    "grid_background": "#FFFFFF",
    "cell_background": "#FFFFFF",
    "weekend_background": "#F1F5F9",
    "cell_border": "#E2E8F0",
    "today_ring": "#2563EB",
    "selection_fill": "#DBEAFE",
    "selection_border": "#93C5FD",
    "month_text": "#94A3B8",
    "day_header_text": "#94A3B8",
}

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _default_color(key: str):
    return field(default_factory=lambda: QColor(COLOR_DEFAULTS[key]))


@dataclass
class Prefs:
    # Grid
    grid_background: QColor = _default_color("grid_background")
    cell_background: QColor = _default_color("cell_background")
    weekend_background: QColor = _default_color("weekend_background")
    cell_border: QColor = _default_color("cell_border")
    today_ring: QColor = _default_color("today_ring")
    selection_fill: QColor = _default_color("selection_fill")
    selection_border: QColor = _default_color("selection_border")
    month_text: QColor = _default_color("month_text")
    day_header_text: QColor = _default_color("day_header_text")
    # UI options
    start_year: int = 0   # 0 = current year
    click_tolerance_px: int = int(CLICK_TOLERANCE_PX)
    max_event_fraction: float = MAX_EVENT_FRACTION
    log_level: str = "INFO"
    # Data API (empty api_url = local CSV files)
    api_url: str = ""
    user_id: str = ""
    access_token: str = ""
    data_dir: str = ""

    def as_color_dict(self) -> Dict[str, str]:
        return {key: qcolor_to_hex(getattr(self, key)) for key in COLOR_DEFAULTS}

    def as_ui_dict(self) -> Dict[str, str]:
        return {
            "start_year": str(int(self.start_year)),
            "click_tolerance_px": str(int(self.click_tolerance_px)),
            "max_event_fraction": f"{self.max_event_fraction:.2f}",
            "log_level": self.log_level,
        }

    def as_remote_dict(self) -> Dict[str, str]:
        return {
            "api_url": self.api_url,
            "user_id": self.user_id,
            "access_token": self.access_token,
            "data_dir": self.data_dir,
        }

    @classmethod
    def from_config(cls, path: Path) -> "Prefs":
        cfg = configparser.ConfigParser(interpolation=None)
        if not path.exists():
            p = cls()
            p.save(path)
            return p
        cfg.read(path, encoding="utf-8")
        sec = cfg["colors"] if "colors" in cfg else {}
        ui = cfg["ui"] if "ui" in cfg else {}
        remote = cfg["remote"] if "remote" in cfg else {}

        def get_int(key: str, default: int) -> int:
            try:
                return int(ui.get(key, str(default)))
            except ValueError:
                return default

        def get_float(key: str, default: float) -> float:
            try:
                return float(ui.get(key, str(default)))
            except ValueError:
                return default

        level = ui.get("log_level", "INFO").strip().upper()
        colors = {key: hex_to_qcolor(sec.get(key, default), default) for key, default in COLOR_DEFAULTS.items()}
        return cls(
            **colors,
            start_year=max(0, get_int("start_year", 0)),
            click_tolerance_px=max(1, min(50, get_int("click_tolerance_px", int(CLICK_TOLERANCE_PX)))),
            max_event_fraction=clamp_event_fraction(get_float("max_event_fraction", MAX_EVENT_FRACTION)),
            log_level=level if level in LOG_LEVELS else "INFO",
            api_url=remote.get("api_url", "").strip(),
            user_id=remote.get("user_id", "").strip(),
            access_token=remote.get("access_token", "").strip(),
            data_dir=remote.get("data_dir", "").strip(),
        )

    def save(self, path: Path):
        cfg = configparser.ConfigParser(interpolation=None)
        cfg["colors"] = self.as_color_dict()
        cfg["ui"] = self.as_ui_dict()
        cfg["remote"] = self.as_remote_dict()
        with path.open("w", encoding="utf-8") as f:
            cfg.write(f)

    def resolved_year(self) -> int:
        return self.start_year or date.today().year

    def effective_api_url(self) -> str:
        return os.environ.get("VANTAGE_API_URL", self.api_url).strip()

    def effective_data_dir(self) -> Path:
        return Path(self.data_dir).expanduser() if self.data_dir else DEFAULT_DATA_DIR

    def current_user(self) -> Optional[UserHandle]:
        if not self.effective_api_url():
            return UserHandle(LOCAL_USER_ID)
        user_id = os.environ.get("VANTAGE_USER_ID", self.user_id).strip()
        token = os.environ.get("VANTAGE_ACCESS_TOKEN", self.access_token).strip()
        if not user_id or not token:
            return None
        return UserHandle(user_id, token)


def make_backend(prefs: Prefs) -> Backend:
    api_url = prefs.effective_api_url()
    if api_url:
        logger.info("Using data API at %s", api_url)
        return PostgrestBackend(api_url)
    data_dir = prefs.effective_data_dir()
    logger.info("No data API configured, storing in %s", data_dir)
    return CsvBackend(data_dir)


def setup_logging(level_name: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class PreferencesDialog(QDialog):
    # Grouped color keys -> (key, label)
    GROUPS = {
        "Grid": [
            ("grid_background", "Grid Background"),
            ("cell_background", "Day Cell"),
            ("weekend_background", "Weekend Cell"),
            ("cell_border", "Cell Border"),
            ("month_text", "Month Labels"),
            ("day_header_text", "Day Numbers"),
        ],
        "Highlights": [
            ("today_ring", "Today Ring"),
            ("selection_fill", "Drag Selection Fill"),
            ("selection_border", "Drag Selection Border"),
        ],
    }

    def __init__(self, prefs: Prefs, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Preferences")
        self.setModal(True)
        self._orig_prefs = prefs
        self._values = prefs.as_color_dict()

        layout = QVBoxLayout(self)
        self.tabs = QTabWidget()
        self.tabs.setTabPosition(QTabWidget.TabPosition.West)
        self.btns: Dict[str, QPushButton] = {}
        self.swatches: Dict[str, QLabel] = {}

        for tab_name, items in self.GROUPS.items():
            page = QWidget()
            grid = QGridLayout(page)
            for row, (key, label) in enumerate(items):
                grid.addWidget(QLabel(label + ":"), row, 0)
                swatch = QLabel()
                swatch.setFixedSize(22, 22)
                swatch.setStyleSheet(f"border:1px solid #888; background:{self._values[key]};")
                self.swatches[key] = swatch
                grid.addWidget(swatch, row, 1)
                b = QPushButton(self._values[key])
                b.clicked.connect(lambda _, k=key: self.pick(k))
                self.btns[key] = b
                grid.addWidget(b, row, 2)
            self.tabs.addTab(page, tab_name)

        page = QWidget()
        grid = QGridLayout(page)
        grid.addWidget(QLabel("Click tolerance (px):"), 0, 0)
        self.tolerance_spin = QSpinBox()
        self.tolerance_spin.setRange(1, 50)
        self.tolerance_spin.setValue(int(prefs.click_tolerance_px))
        grid.addWidget(self.tolerance_spin, 0, 1)
        grid.addWidget(QLabel("Event bars fill up to:"), 1, 0)
        self.fraction_spin = QDoubleSpinBox()
        self.fraction_spin.setRange(MIN_EVENT_FRACTION, MAX_EVENT_FRACTION_CAP)
        self.fraction_spin.setSingleStep(0.05)
        self.fraction_spin.setValue(float(prefs.max_event_fraction))
        grid.addWidget(self.fraction_spin, 1, 1)
        grid.addWidget(QLabel("Log level:"), 2, 0)
        self.log_combo = QComboBox()
        self.log_combo.addItems(LOG_LEVELS)
        self.log_combo.setCurrentText(prefs.log_level)
        grid.addWidget(self.log_combo, 2, 1)
        grid.setRowStretch(3, 1)
        self.tabs.addTab(page, "Behavior")

        layout.addWidget(self.tabs)
        box = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        box.accepted.connect(self.accept)
        box.rejected.connect(self.reject)
        layout.addWidget(box)

    def pick(self, key: str):
        start = hex_to_qcolor(self._values[key], self._values[key])
        c = QColorDialog.getColor(start, self, f"Pick color for {key}")
        if c.isValid():
            hexv = qcolor_to_hex(c)
            self._values[key] = hexv
            self.btns[key].setText(hexv)
            self.swatches[key].setStyleSheet(f"border:1px solid #888; background:{hexv};")

    def result_prefs(self) -> Prefs:
        colors = {key: hex_to_qcolor(self._values.get(key, d), d) for key, d in COLOR_DEFAULTS.items()}
        return replace(
            self._orig_prefs,
            **colors,
            click_tolerance_px=int(self.tolerance_spin.value()),
            max_event_fraction=clamp_event_fraction(self.fraction_spin.value()),
            log_level=self.log_combo.currentText(),
        )


# ---------------------------------------------------------------------------
# Dialogs
# ---------------------------------------------------------------------------

def fill_category_combo(combo: QComboBox, categories: Sequence[Category], selected_id: Optional[str] = None):
    combo.clear()
    for cat in categories:
        combo.addItem(color_icon(cat.color), cat.name, cat.id)
    if selected_id is not None:
        idx = combo.findData(selected_id)
        if idx >= 0:
            combo.setCurrentIndex(idx)


class EventFormDialog(QDialog):
    """Title / category / date range / notes form shared by the add and edit dialogs."""

    def __init__(self, window_title: str, categories: Sequence[Category], title: str, start: date, end: date,
                 category_id: Optional[str] = None, description: str = "", parent=None):
        super().__init__(parent)
        self.setWindowTitle(window_title)
        self.setModal(True)
        self.setMinimumWidth(440)
        v = QVBoxLayout(self)

        form = QGridLayout()
        form.addWidget(QLabel("Title:"), 0, 0)
        self.title_edit = QLineEdit(title)
        self.title_edit.setPlaceholderText("e.g. Vacation in Spain")
        form.addWidget(self.title_edit, 0, 1, 1, 3)

        form.addWidget(QLabel("Category:"), 1, 0)
        self.category_combo = QComboBox()
        fill_category_combo(self.category_combo, categories, category_id)
        form.addWidget(self.category_combo, 1, 1, 1, 3)

        form.addWidget(QLabel("From:"), 2, 0)
        self.start_edit = QDateEdit(to_qdate(start))
        self.start_edit.setCalendarPopup(True)
        self.start_edit.setDisplayFormat("d MMM yyyy")
        form.addWidget(self.start_edit, 2, 1)
        form.addWidget(QLabel("To:"), 2, 2)
        self.end_edit = QDateEdit(to_qdate(end))
        self.end_edit.setCalendarPopup(True)
        self.end_edit.setDisplayFormat("d MMM yyyy")
        self.end_edit.setMinimumDate(self.start_edit.date())
        form.addWidget(self.end_edit, 2, 3)

        form.addWidget(QLabel("Notes:"), 3, 0, Qt.AlignmentFlag.AlignTop)
        self.description_edit = QPlainTextEdit(description or "")
        self.description_edit.setFixedHeight(70)
        form.addWidget(self.description_edit, 3, 1, 1, 3)
        v.addLayout(form)

        self.summary_label = QLabel()
        self.summary_label.setStyleSheet("color:#64748B; background:#F8FAFC; padding:6px;")
        v.addWidget(self.summary_label)

        self.button_row = QHBoxLayout()
        self.button_box = QDialogButtonBox(QDialogButtonBox.StandardButton.Save | QDialogButtonBox.StandardButton.Cancel)
        self.button_box.accepted.connect(self.accept)
        self.button_box.rejected.connect(self.reject)
        self.button_row.addStretch(1)
        self.button_row.addWidget(self.button_box)
        v.addLayout(self.button_row)

        self.title_edit.textChanged.connect(self._refresh)
        self.start_edit.dateChanged.connect(self._on_start_changed)
        self.end_edit.dateChanged.connect(self._refresh)
        self._refresh()

    def _on_start_changed(self, qd: QDate):
        self.end_edit.setMinimumDate(qd)
        self._refresh()

    def _refresh(self, *_):
        title = self.title_edit.text().strip()
        ok = self.button_box.button(QDialogButtonBox.StandardButton.Save)
        ok.setEnabled(bool(title) and self.category_combo.count() > 0)
        start, end = self.date_range()
        days = (end - start).days + 1
        self.summary_label.setText(
            f"Planned: <b>{title or '...'}</b> from {start:%d %b} to {end:%d %b %Y} "
            f"({days} day{'s' if days != 1 else ''})"
        )

    def date_range(self) -> Tuple[date, date]:
        start = as_day(self.start_edit.date())
        end = as_day(self.end_edit.date())
        return start, max(start, end)

    def result_payload(self) -> dict:
        start, end = self.date_range()
        return {
            "title": self.title_edit.text().strip(),
            "start": start,
            "end": end,
            "category_id": self.category_combo.currentData(),
            "description": self.description_edit.toPlainText().strip() or None,
        }


class AddEventDialog(EventFormDialog):
    def __init__(self, categories: Sequence[Category], start: date, end: date, parent=None):
        first_id = categories[0].id if categories else None
        super().__init__("New Entry", categories, "", start, end, first_id, parent=parent)
        self.title_edit.setFocus()


class EditEventDialog(EventFormDialog):
    def __init__(self, event: CalendarEvent, categories: Sequence[Category], parent=None):
        super().__init__("Event Details", categories, event.title, event.start_date, event.end_date,
                         event.category_id, event.description or "", parent=parent)
        self._event = event
        self.delete_requested = False
        if self.category_combo.findData(event.category_id) < 0:
            # category is gone; keep the reference so saving does not silently move the event
            self.category_combo.insertItem(0, color_icon(DEFAULT_COLOR_TOKEN), "(deleted category)", event.category_id)
            self.category_combo.setCurrentIndex(0)
        delete_btn = QPushButton("Delete")
        delete_btn.setStyleSheet("color:#b00020;")
        delete_btn.clicked.connect(self._confirm_delete)
        self.button_row.insertWidget(0, delete_btn)
        self._refresh()

    def _confirm_delete(self):
        answer = QMessageBox.question(self, "Delete Event", f"Really delete \"{self._event.title}\"?")
        if answer == QMessageBox.StandardButton.Yes:
            self.delete_requested = True
            self.accept()

    def changed_fields(self) -> dict:
        payload = self.result_payload()
        candidates = {
            "title": payload["title"],
            "start_date": payload["start"],
            "end_date": payload["end"],
            "category_id": payload["category_id"],
            "description": payload["description"],
        }
        return {k: v for k, v in candidates.items() if getattr(self._event, k) != v}


class AddCategoryDialog(QDialog):
    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("New Category")
        self.setModal(True)
        v = QVBoxLayout(self)
        grid = QGridLayout()
        grid.addWidget(QLabel("Name:"), 0, 0)
        self.name_edit = QLineEdit()
        self.name_edit.setPlaceholderText("e.g. Work")
        grid.addWidget(self.name_edit, 0, 1)
        grid.addWidget(QLabel("Color:"), 1, 0)
        self.color_combo = QComboBox()
        for token in PALETTE:
            self.color_combo.addItem(color_icon(token), token.title(), token)
        grid.addWidget(self.color_combo, 1, 1)
        v.addLayout(grid)
        self.box = QDialogButtonBox(QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel)
        self.box.accepted.connect(self.accept)
        self.box.rejected.connect(self.reject)
        v.addWidget(self.box)
        self.name_edit.textChanged.connect(self._refresh)
        self._refresh()

    def _refresh(self, *_):
        self.box.button(QDialogButtonBox.StandardButton.Ok).setEnabled(bool(self.name_edit.text().strip()))

    def result_payload(self) -> dict:
        return {"name": self.name_edit.text().strip(), "color": self.color_combo.currentData()}


# ---------------------------------------------------------------------------
# Year grid
# ---------------------------------------------------------------------------

class YearGrid(QWidget):
    """Custom-painted 12 x 31 day grid. Pointer input goes through a GestureMachine."""
    gutter = 56
    header_h = 22
    row_h = 56
    row_gap = 6
    col_gap = 3
    right_pad = 8

    daySelected = Signal(object)
    rangeSelected = Signal(object, object)
    eventSelected = Signal(str)

    def __init__(self, prefs: Optional[Prefs] = None, parent=None):
        super().__init__(parent)
        self.prefs = prefs or Prefs()
        self.snapshot = YearSnapshot(date.today().year)
        self.day_events: Dict[date, List[CalendarEvent]] = layout_year(self.snapshot)
        self.gesture = GestureMachine(self.prefs.click_tolerance_px)
        self._pressed_event_id: Optional[str] = None
        self.setMouseTracking(True)
        self.setMinimumSize(1100, self.header_h + 12 * (self.row_h + self.row_gap))

    def set_snapshot(self, snapshot: YearSnapshot):
        if snapshot.year != self.snapshot.year:
            self.cancel_gesture()
        self.snapshot = snapshot
        self.day_events = layout_year(snapshot)
        self.update()

    def set_prefs(self, prefs: Prefs):
        self.prefs = prefs
        self.gesture.click_tolerance = float(prefs.click_tolerance_px)
        self.update()

    # --- geometry ---
    def _col_w(self) -> float:
        return max(8.0, (self.width() - self.gutter - self.right_pad - 30 * self.col_gap) / 31.0)

    def cell_rect(self, month_index: int, day_num: int) -> QRectF:
        w = self._col_w()
        x = self.gutter + (day_num - 1) * (w + self.col_gap)
        y = self.header_h + month_index * (self.row_h + self.row_gap)
        return QRectF(x, y, w, self.row_h)

    def day_at(self, pos: QPointF) -> Optional[date]:
        x = pos.x() - self.gutter
        y = pos.y() - self.header_h
        if x < 0 or y < 0:
            return None
        w = self._col_w()
        col = int(x // (w + self.col_gap))
        row = int(y // (self.row_h + self.row_gap))
        if not (0 <= col < 31 and 0 <= row < 12):
            return None
        day_num = col + 1
        if day_num > days_in_month(self.snapshot.year, row):
            return None
        if not self.cell_rect(row, day_num).contains(pos):
            return None  # in the gap between cells
        return date(self.snapshot.year, row + 1, day_num)

    def segment_rects(self, day: date) -> List[Tuple[CalendarEvent, QRectF]]:
        rect = self.cell_rect(day.month - 1, day.day)
        events = self.day_events.get(day, [])
        part = cell_segments(len(events), rect.height(), self.prefs.max_event_fraction)
        return [(ev, QRectF(rect.x(), rect.y() + off, rect.width(), h)) for ev, (off, h) in zip(events, part.segments)]

    def segment_at(self, pos: QPointF) -> Optional[CalendarEvent]:
        day = self.day_at(pos)
        if day is None:
            return None
        for ev, r in self.segment_rects(day):
            if r.contains(pos):
                return ev
        return None

    # --- painting ---
    def paintEvent(self, event):
        p = QPainter(self)
        p.fillRect(self.rect(), self.prefs.grid_background)
        year = self.snapshot.year
        today = date.today()
        preview = self.gesture.preview_range()
        w = self._col_w()

        p.setPen(QPen(self.prefs.day_header_text))
        p.setFont(QFont("Segoe UI", 7, QFont.Weight.Bold))
        for col in range(31):
            x = self.gutter + col * (w + self.col_gap)
            p.drawText(QRectF(x, 0, w, self.header_h), Qt.AlignmentFlag.AlignCenter, str(col + 1))

        for month_index in range(12):
            y = self.header_h + month_index * (self.row_h + self.row_gap)
            p.setPen(QPen(self.prefs.month_text))
            p.setFont(QFont("Segoe UI", 12, QFont.Weight.Bold))
            p.drawText(QRectF(0, y, self.gutter - 6, self.row_h), Qt.AlignmentFlag.AlignCenter, MONTHS[month_index])

            for day_num in range(1, days_in_month(year, month_index) + 1):
                d = date(year, month_index + 1, day_num)
                rect = self.cell_rect(month_index, day_num)
                weekend = d.weekday() >= 5
                selected = preview is not None and preview[0] <= d <= preview[1]
                fill = self.prefs.selection_fill if selected else (
                    self.prefs.weekend_background if weekend else self.prefs.cell_background)
                p.fillRect(rect, fill)

                for ev, r in self.segment_rects(d):
                    color = token_to_qcolor(color_of(self.snapshot.categories, ev.category_id))
                    color.setAlpha(230)
                    p.fillRect(r, color)
                    p.setPen(QPen(QColor(255, 255, 255, 60), 1))
                    p.drawLine(r.topLeft(), r.topRight())

                border = self.prefs.selection_border if selected else self.prefs.cell_border
                p.setPen(QPen(border, 1))
                p.setBrush(Qt.BrushStyle.NoBrush)
                p.drawRect(rect.adjusted(0, 0, -1, -1))

                if weekend:
                    p.setPen(Qt.PenStyle.NoPen)
                    p.setBrush(QBrush(self.prefs.cell_border.darker(130)))
                    p.drawEllipse(QPointF(rect.right() - 3, rect.top() + 3), 1.5, 1.5)
                if d == today:
                    p.setRenderHint(QPainter.RenderHint.Antialiasing, True)
                    p.setPen(QPen(self.prefs.today_ring, 2))
                    p.setBrush(Qt.BrushStyle.NoBrush)
                    p.drawRoundedRect(rect.adjusted(-1, -1, 1, 1), 2, 2)
                    p.setRenderHint(QPainter.RenderHint.Antialiasing, False)
        p.end()

    # --- pointer input ---
    def cancel_gesture(self):
        self._pressed_event_id = None
        if self.gesture.cancel():
            self.update()

    def mousePressEvent(self, e):
        pos = e.position()
        if e.button() != Qt.MouseButton.LeftButton:
            super().mousePressEvent(e)
            return
        hit = self.segment_at(pos)
        if hit is not None:
            # event bars take the press; the day cell never arms
            self._pressed_event_id = hit.id
            e.accept()
            return
        day = self.day_at(pos)
        if day is not None and self.gesture.pointer_down(day, (pos.x(), pos.y())):
            self.update()
        e.accept()

    def mouseMoveEvent(self, e):
        if not self.gesture.active:
            super().mouseMoveEvent(e)
            return
        pos = e.position()
        if not self.rect().contains(pos.toPoint()):
            self.cancel_gesture()
        else:
            day = self.day_at(pos)
            if day is not None and self.gesture.pointer_enter(day):
                self.update()
        e.accept()

    def mouseReleaseEvent(self, e):
        if e.button() != Qt.MouseButton.LeftButton:
            super().mouseReleaseEvent(e)
            return
        pos = e.position()
        pressed, self._pressed_event_id = self._pressed_event_id, None
        if pressed is not None:
            hit = self.segment_at(pos)
            if hit is not None and hit.id == pressed:
                selection = self.gesture.event_clicked(pressed)
                if selection is not None:
                    self.eventSelected.emit(selection.event_id)
            e.accept()
            return
        if not self.rect().contains(pos.toPoint()):
            # released outside the grid
            self.cancel_gesture()
            e.accept()
            return
        selection = self.gesture.pointer_up((pos.x(), pos.y()))
        self.update()
        if isinstance(selection, DaySelection):
            self.daySelected.emit(selection.day)
        elif isinstance(selection, RangeSelection):
            self.rangeSelected.emit(selection.start, selection.end)
        e.accept()

    def leaveEvent(self, e):
        self.cancel_gesture()
        super().leaveEvent(e)

    def event(self, e):
        if e.type() == QEvent.Type.ToolTip:
            ev = self.segment_at(QPointF(e.pos()))
            if ev is not None:
                cat = self.snapshot.category(ev.category_id)
                span = f"{ev.start_date:%d %b}" if span_days(ev) == 1 else f"{ev.start_date:%d %b} - {ev.end_date:%d %b %Y}"
                text = f"<b>{ev.title}</b><br>{span}"
                if cat is not None:
                    text += f"<br>{cat.name}"
                QToolTip.showText(e.globalPos(), text, self)
            else:
                QToolTip.hideText()
                e.ignore()
            return True
        return super().event(e)


class DocumentPointerWatcher(QObject):
    """Application-wide filter: a release anywhere else, or losing focus, ends the grid's gesture."""

    def __init__(self, grid: YearGrid, parent=None):
        super().__init__(parent)
        self.grid = grid

    def eventFilter(self, obj, ev):
        if self.grid.gesture.active:
            etype = ev.type()
            if etype == QEvent.Type.ApplicationDeactivate:
                self.grid.cancel_gesture()
            elif etype == QEvent.Type.MouseButtonRelease and isinstance(obj, QWidget):
                if obj is not self.grid and not self.grid.isAncestorOf(obj):
                    self.grid.cancel_gesture()
        return False


# ---------------------------------------------------------------------------
# Main window
# ---------------------------------------------------------------------------

class CategoryLegend(QWidget):
    addRequested = Signal()
    deleteRequested = Signal(str)

    def __init__(self, parent=None):
        super().__init__(parent)
        self._row = QHBoxLayout(self)
        self._row.setContentsMargins(8, 4, 8, 4)
        self._chips: List[QWidget] = []
        label = QLabel("CATEGORIES:")
        label.setStyleSheet("font-size:10px; font-weight:700; color:#94A3B8;")
        self._row.addWidget(label)
        self.add_btn = QToolButton()
        self.add_btn.setText("+ New")
        self.add_btn.setAutoRaise(True)
        self.add_btn.clicked.connect(lambda: self.addRequested.emit())
        self._row.addWidget(self.add_btn)
        self._row.addStretch(1)
        hint = QLabel("Weekend = shaded  |  Today = ring  |  Drag across days to plan a range")
        hint.setStyleSheet("font-size:10px; color:#64748B;")
        self._row.addWidget(hint)

    def set_categories(self, categories: Sequence[Category]):
        for chip in self._chips:
            self._row.removeWidget(chip)
            chip.deleteLater()
        self._chips.clear()
        insert_at = 1
        for cat in categories:
            chip = QToolButton()
            chip.setText(cat.name)
            chip.setIcon(color_icon(cat.color))
            chip.setToolButtonStyle(Qt.ToolButtonStyle.ToolButtonTextBesideIcon)
            chip.setAutoRaise(True)
            chip.setPopupMode(QToolButton.ToolButtonPopupMode.InstantPopup)
            menu = QMenu(chip)
            act = menu.addAction("Delete category…")
            act.triggered.connect(lambda _=False, cid=cat.id: self.deleteRequested.emit(cid))
            chip.setMenu(menu)
            self._row.insertWidget(insert_at, chip)
            insert_at += 1
            self._chips.append(chip)


class MainWindow(QMainWindow):
    def __init__(self, prefs: Optional[Prefs] = None, coordinator: Optional[MutationCoordinator] = None):
        super().__init__()
        self.prefs = prefs or Prefs.from_config(PREF_PATH)
        self.resize(1400, 900)
        user = self.prefs.current_user()
        self.coordinator = coordinator or MutationCoordinator(
            make_backend(self.prefs), self.prefs.resolved_year(), parent=self)

        # Menus
        menu = self.menuBar()
        edit_menu = menu.addMenu("Edit")
        pref_act = QAction("Preferences…", self)
        pref_act.triggered.connect(self.open_prefs)
        edit_menu.addAction(pref_act)
        cat_act = QAction("New Category…", self)
        cat_act.triggered.connect(self.add_category)
        edit_menu.addAction(cat_act)
        view_menu = menu.addMenu("View")
        refresh_act = QAction("Reload", self)
        refresh_act.setShortcut(QKeySequence.StandardKey.Refresh)
        refresh_act.triggered.connect(lambda: self.coordinator.refresh())
        view_menu.addAction(refresh_act)

        # Toolbar
        tb = QToolBar("Controls", self)
        tb.setMovable(False)
        self.addToolBar(tb)
        self.prev_btn = QToolButton()
        self.prev_btn.setText("◀")
        self.prev_btn.setAutoRaise(True)
        self.prev_btn.clicked.connect(lambda: self.year_spin.setValue(self.year_spin.value() - 1))
        tb.addWidget(self.prev_btn)
        self.year_spin = QSpinBox()
        self.year_spin.setRange(1900, 2999)
        self.year_spin.setValue(self.coordinator.year)
        self.year_spin.valueChanged.connect(self.on_year_changed)
        tb.addWidget(self.year_spin)
        self.next_btn = QToolButton()
        self.next_btn.setText("▶")
        self.next_btn.setAutoRaise(True)
        self.next_btn.clicked.connect(lambda: self.year_spin.setValue(self.year_spin.value() + 1))
        tb.addWidget(self.next_btn)
        self.today_btn = QPushButton("This year")
        self.today_btn.clicked.connect(lambda: self.year_spin.setValue(date.today().year))
        tb.addWidget(self.today_btn)
        tb.addSeparator()
        self.loading_label = QLabel("")
        tb.addWidget(self.loading_label)

        # Legend + grid
        central = QWidget()
        v = QVBoxLayout(central)
        v.setContentsMargins(8, 8, 8, 8)
        self.legend = CategoryLegend()
        self.legend.addRequested.connect(self.add_category)
        self.legend.deleteRequested.connect(self.delete_category)
        v.addWidget(self.legend)
        self.grid = YearGrid(prefs=self.prefs)
        scroll = QScrollArea()
        scroll.setWidget(self.grid)
        scroll.setWidgetResizable(True)
        self.scroll_area = scroll
        v.addWidget(scroll, 1)
        self.setCentralWidget(central)

        self.grid.daySelected.connect(lambda d: self.open_add_dialog(d, d))
        self.grid.rangeSelected.connect(self.open_add_dialog)
        self.grid.eventSelected.connect(self.open_edit_dialog)
        self.pointer_watcher = DocumentPointerWatcher(self.grid, self)
        app = QApplication.instance()
        if app is not None:
            app.installEventFilter(self.pointer_watcher)

        self.coordinator.snapshotChanged.connect(self.on_snapshot_changed)
        self.coordinator.loadingChanged.connect(self.on_loading_changed)
        self.coordinator.syncFailed.connect(lambda msg: self.flash_status(msg, warn=True))
        self.on_snapshot_changed(self.coordinator.snapshot)

        if user is None:
            self.flash_status("Not signed in: set user_id and access_token in pref.ini", warn=True)
        self.coordinator.set_user(user)

    # --- coordinator -> view ---
    def on_snapshot_changed(self, snapshot: YearSnapshot):
        self.setWindowTitle(f"Vantage {snapshot.year}")
        self.grid.set_snapshot(snapshot)
        self.legend.set_categories(snapshot.categories)

    def on_loading_changed(self, loading: bool):
        self.loading_label.setText("  Loading…" if loading else "")

    def on_year_changed(self, year: int):
        if year != self.coordinator.year:
            self.coordinator.set_year(year)

    # --- dialogs ---
    def open_add_dialog(self, start: date, end: date):
        categories = self.coordinator.snapshot.categories
        if not categories:
            QMessageBox.information(self, "No Categories", "Create a category first.")
            if not self.add_category():
                return
            categories = self.coordinator.snapshot.categories
        dlg = AddEventDialog(categories, start, end, parent=self)
        if dlg.exec() != QDialog.DialogCode.Accepted:
            return
        payload = dlg.result_payload()
        try:
            self.coordinator.create_event(**payload)
        except ValidationError as e:
            QMessageBox.warning(self, "Cannot Save", str(e))

    def open_edit_dialog(self, event_id: str):
        snapshot = self.coordinator.snapshot
        ev = snapshot.event(event_id)
        if ev is None:
            self.flash_status("That event no longer exists", warn=True)
            return
        dlg = EditEventDialog(ev, snapshot.categories, parent=self)
        if dlg.exec() != QDialog.DialogCode.Accepted:
            return
        if dlg.delete_requested:
            self.coordinator.delete_event(event_id)
            return
        changes = dlg.changed_fields()
        if not changes:
            return
        try:
            self.coordinator.update_event(event_id, **changes)
        except ValidationError as e:
            QMessageBox.warning(self, "Cannot Save", str(e))

    def add_category(self) -> bool:
        dlg = AddCategoryDialog(self)
        if dlg.exec() != QDialog.DialogCode.Accepted:
            return False
        try:
            return self.coordinator.create_category(**dlg.result_payload()) is not None
        except ValidationError as e:
            QMessageBox.warning(self, "Cannot Save", str(e))
            return False

    def delete_category(self, category_id: str):
        snapshot = self.coordinator.snapshot
        cat = snapshot.category(category_id)
        if cat is None:
            return
        count = sum(1 for e in snapshot.events if e.category_id == category_id)
        msg = f"Delete category \"{cat.name}\"?"
        if count:
            msg += f"\n{count} event(s) in {snapshot.year} will be removed as well."
        if QMessageBox.question(self, "Delete Category", msg) == QMessageBox.StandardButton.Yes:
            self.coordinator.delete_category(category_id)

    def open_prefs(self):
        dlg = PreferencesDialog(self.prefs, self)
        if dlg.exec() == QDialog.DialogCode.Accepted:
            self.prefs = dlg.result_prefs()
            self.prefs.save(PREF_PATH)
            logging.getLogger().setLevel(getattr(logging, self.prefs.log_level, logging.INFO))
            self.grid.set_prefs(self.prefs)

    def flash_status(self, msg: str, warn: bool = False):
        if warn:
            self.statusBar().setStyleSheet("color:#b00020;")
        else:
            self.statusBar().setStyleSheet("")
        self.statusBar().showMessage(msg, 4000)

    def closeEvent(self, e):
        try:
            app = QApplication.instance()
            if app is not None:
                app.removeEventFilter(self.pointer_watcher)
            runner = self.coordinator.runner
            if hasattr(runner, "wait_for_done") and not runner.wait_for_done(3000):
                logger.warning("Closing with %d unsaved change(s)", len(self.coordinator.pending_ops()))
        finally:
            super().closeEvent(e)


def main():
    prefs = Prefs.from_config(PREF_PATH)
    setup_logging(prefs.log_level)
    app = QApplication(sys.argv)
    w = MainWindow(prefs)
    w.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
