import os
from datetime import date

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtWidgets import QApplication  # noqa: E402

import vantage  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    app = QApplication.instance() or QApplication([])
    yield app


class InlineRunner:
    """Runs store calls immediately on the calling thread."""

    def __init__(self):
        self.labels = []

    def submit(self, label, fn, on_success, on_error):
        self.labels.append(label)
        try:
            result = fn()
        except Exception as exc:
            on_error(exc)
        else:
            on_success(result)


class DeferredRunner:
    """Queues store calls until the test releases them, to simulate in-flight requests."""

    def __init__(self):
        self.jobs = []

    def submit(self, label, fn, on_success, on_error):
        self.jobs.append((label, fn, on_success, on_error))

    def labels(self):
        return [job[0] for job in self.jobs]

    def run_next(self, index=0):
        label, fn, on_success, on_error = self.jobs.pop(index)
        try:
            result = fn()
        except Exception as exc:
            on_error(exc)
        else:
            on_success(result)
        return label

    def prefetch(self, index):
        """Run the store call now but hold its answer back until the job is released."""
        label, fn, on_success, on_error = self.jobs[index]
        try:
            result = fn()
        except Exception as exc:
            def replay(error=exc):
                raise error

            self.jobs[index] = (label, replay, on_success, on_error)
        else:
            self.jobs[index] = (label, lambda: result, on_success, on_error)

    def run_all(self):
        while self.jobs:
            self.run_next()


class FlakyBackend(vantage.CsvBackend):
    """CSV store whose named operations raise StoreError."""

    def __init__(self, data_dir, fail_on=()):
        super().__init__(data_dir)
        self.fail_on = set(fail_on)
        self.fail_once = set()
        self.calls = []

    def _maybe_fail(self, name):
        self.calls.append(name)
        if name in self.fail_once:
            self.fail_once.discard(name)
            raise vantage.StoreError(f"{name} rejected", status=500)
        if name in self.fail_on:
            raise vantage.StoreError(f"{name} rejected", status=500)

    def create_event(self, user, event):
        self._maybe_fail("create_event")
        return super().create_event(user, event)

    def update_event(self, user, event_id, fields):
        self._maybe_fail("update_event")
        return super().update_event(user, event_id, fields)

    def delete_event(self, user, event_id):
        self._maybe_fail("delete_event")
        return super().delete_event(user, event_id)

    def create_category(self, user, name, color):
        self._maybe_fail("create_category")
        return super().create_category(user, name, color)

    def delete_category(self, user, category_id):
        self._maybe_fail("delete_category")
        return super().delete_category(user, category_id)

    def load_events(self, user, year):
        self._maybe_fail("load_events")
        return super().load_events(user, year)


@pytest.fixture
def user():
    return vantage.UserHandle("user-1", "token-1")


@pytest.fixture
def backend(tmp_path):
    return FlakyBackend(tmp_path / "data")


@pytest.fixture
def seeded_backend(backend, user):
    """Store with one 'Vacation' (teal) category and a 2026 event in it."""
    cat = backend.create_category(user, "Vacation", "teal")
    backend.create_event(user, vantage.CalendarEvent("x", "Spain", date(2026, 2, 3), date(2026, 2, 6), cat.id))
    backend.calls.clear()
    return backend


def make_coordinator(backend, user, runner=None, year=2026):
    coord = vantage.MutationCoordinator(backend, year, user=user, runner=runner or InlineRunner())
    snapshots = []
    failures = []
    coord.snapshotChanged.connect(lambda snap: snapshots.append(snap))
    coord.syncFailed.connect(lambda msg: failures.append(msg))
    coord.emitted_snapshots = snapshots
    coord.emitted_failures = failures
    return coord
