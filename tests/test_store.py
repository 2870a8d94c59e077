import json
from datetime import date

import pytest
import requests

from vantage import (
    CalendarEvent, CsvBackend, PostgrestBackend, Prefs, StoreError, UserHandle, event_from_row,
    get_api_client,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "params": params, "json": json})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


USER = UserHandle("user-1", "secret")


def test_load_events_filters_by_overlap_and_orders():
    session = FakeSession(FakeResponse(200, [
        {"id": 7, "title": "Ski", "start_date": "2025-12-30", "end_date": "2026-01-02",
         "category_id": "c1", "description": None},
    ]))
    backend = PostgrestBackend("https://api.example.test/rest/v1/", session=session)
    [ev] = backend.load_events(USER, 2026)
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://api.example.test/rest/v1/events"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert ("start_date", "lte.2026-12-31") in call["params"]
    assert ("end_date", "gte.2026-01-01") in call["params"]
    assert ("order", "start_date.asc") in call["params"]
    assert ev.id == "7" and ev.start_date == date(2025, 12, 30)


def test_load_categories_orders_by_creation():
    session = FakeSession(FakeResponse(200, [{"id": "c1", "name": "Vacation", "color": "bg-teal-400"}]))
    [cat] = PostgrestBackend("https://api.example.test", session=session).load_categories(USER)
    assert ("order", "created_at.asc") in session.calls[0]["params"]
    assert cat.color == "teal"


def test_create_event_sends_plain_dates_and_returns_stored_record():
    stored = {"id": "e9", "title": "Spain", "start_date": "2026-02-03", "end_date": "2026-02-06",
              "category_id": "c1", "description": None}
    session = FakeSession(FakeResponse(201, [stored]))
    backend = PostgrestBackend("https://api.example.test", session=session)
    draft = CalendarEvent("tmp-1", "Spain", date(2026, 2, 3), date(2026, 2, 6), "c1")
    created = backend.create_event(USER, draft)
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["headers"]["Prefer"] == "return=representation"
    assert call["json"]["start_date"] == "2026-02-03"
    assert call["json"]["user_id"] == "user-1"
    assert "id" not in call["json"]
    assert created.id == "e9"


def test_update_and_delete_target_one_row():
    session = FakeSession(FakeResponse(204), FakeResponse(204))
    backend = PostgrestBackend("https://api.example.test", session=session)
    backend.update_event(USER, "e9", {"end_date": date(2026, 2, 8)})
    backend.delete_event(USER, "e9")
    assert session.calls[0]["method"] == "PATCH"
    assert session.calls[0]["params"] == [("id", "eq.e9")]
    assert session.calls[0]["json"] == {"end_date": "2026-02-08"}
    assert session.calls[1]["method"] == "DELETE"


def test_ensure_user_treats_duplicate_key_as_success():
    session = FakeSession(
        FakeResponse(200, []),
        FakeResponse(409, {"code": "23505", "message": "duplicate key value"}),
    )
    PostgrestBackend("https://api.example.test", session=session).ensure_user(USER)
    assert [c["method"] for c in session.calls] == ["GET", "POST"]


def test_ensure_user_skips_insert_when_present():
    session = FakeSession(FakeResponse(200, [{"id": "user-1"}]))
    PostgrestBackend("https://api.example.test", session=session).ensure_user(USER)
    assert len(session.calls) == 1


def test_http_error_becomes_store_error():
    session = FakeSession(FakeResponse(401, {"code": "PGRST301", "message": "JWT expired"}))
    with pytest.raises(StoreError) as info:
        PostgrestBackend("https://api.example.test", session=session).load_categories(USER)
    assert info.value.status == 401
    assert "JWT expired" in str(info.value)


def test_transport_error_becomes_store_error():
    session = FakeSession(requests.ConnectionError("refused"))
    with pytest.raises(StoreError):
        PostgrestBackend("https://api.example.test", session=session).delete_event(USER, "e1")


def test_missing_token_is_rejected():
    with pytest.raises(StoreError):
        get_api_client(UserHandle("user-1"), "https://api.example.test")


def test_event_row_mapping_ignores_time_of_day():
    ev = event_from_row({"id": "e1", "title": "Trip", "start_date": "2026-03-01T00:00:00",
                         "end_date": "2026-03-02", "category_id": "c1", "description": ""})
    assert ev.start_date == date(2026, 3, 1)
    assert ev.description is None


def test_csv_backend_roundtrip_and_cascade(tmp_path):
    user = UserHandle("local")
    other = UserHandle("someone-else")
    backend = CsvBackend(tmp_path)
    work = backend.create_category(user, "Work", "blue")
    home = backend.create_category(user, "Home", "green")
    backend.create_category(other, "Theirs", "red")
    ev = backend.create_event(user, CalendarEvent("tmp-1", "Offsite", date(2026, 9, 1), date(2026, 9, 3), work.id))
    backend.create_event(user, CalendarEvent("tmp-2", "Garden", date(2026, 5, 1), date(2026, 5, 1), home.id))
    backend.create_event(user, CalendarEvent("tmp-3", "Old", date(2024, 5, 1), date(2024, 5, 1), home.id))

    assert [c.name for c in backend.load_categories(user)] == ["Work", "Home"]
    assert [e.title for e in backend.load_events(user, 2026)] == ["Garden", "Offsite"]
    assert ev.id != "tmp-1"

    backend.update_event(user, ev.id, {"title": "Retreat", "description": None})
    assert {e.title for e in backend.load_events(user, 2026)} == {"Garden", "Retreat"}

    backend.delete_category(user, work.id)
    assert [c.name for c in backend.load_categories(user)] == ["Home"]
    assert [e.title for e in backend.load_events(user, 2026)] == ["Garden"]
    assert [c.name for c in backend.load_categories(other)] == ["Theirs"]


def test_prefs_roundtrip_and_identity(tmp_path, monkeypatch):
    monkeypatch.delenv("VANTAGE_API_URL", raising=False)
    monkeypatch.delenv("VANTAGE_USER_ID", raising=False)
    monkeypatch.delenv("VANTAGE_ACCESS_TOKEN", raising=False)
    path = tmp_path / "pref.ini"
    prefs = Prefs.from_config(path)
    assert path.exists()
    assert prefs.current_user() == UserHandle("local")

    prefs.api_url = "https://api.example.test"
    prefs.max_event_fraction = 0.6
    prefs.save(path)
    loaded = Prefs.from_config(path)
    assert loaded.max_event_fraction == pytest.approx(0.6)
    assert loaded.current_user() is None

    monkeypatch.setenv("VANTAGE_USER_ID", "user-1")
    monkeypatch.setenv("VANTAGE_ACCESS_TOKEN", "secret")
    assert loaded.current_user() == UserHandle("user-1", "secret")
