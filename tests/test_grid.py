from datetime import date

import pytest
from PySide6.QtCore import QEvent, QPointF, Qt
from PySide6.QtGui import QMouseEvent
from PySide6.QtWidgets import QWidget

from vantage import (
    Armed, CalendarEvent, Category, DocumentPointerWatcher, Dragging, Idle, Prefs, YearGrid, YearSnapshot,
)

SPAIN = CalendarEvent("e1", "Spain", date(2026, 2, 3), date(2026, 2, 6), "c1")


def mouse(kind, pos, button=Qt.MouseButton.LeftButton, buttons=None):
    if buttons is None:
        buttons = Qt.MouseButton.NoButton if kind == QEvent.Type.MouseButtonRelease else button
    return QMouseEvent(kind, pos, pos, button, buttons, Qt.KeyboardModifier.NoModifier)


def press(grid, pos, button=Qt.MouseButton.LeftButton):
    grid.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, pos, button))


def move(grid, pos):
    grid.mouseMoveEvent(mouse(QEvent.Type.MouseMove, pos, Qt.MouseButton.NoButton, Qt.MouseButton.LeftButton))


def release(grid, pos):
    grid.mouseReleaseEvent(mouse(QEvent.Type.MouseButtonRelease, pos))


def center(grid, day):
    return grid.cell_rect(day.month - 1, day.day).center()


def free_spot(grid, day):
    rect = grid.cell_rect(day.month - 1, day.day)
    return QPointF(rect.center().x(), rect.bottom() - 2)


@pytest.fixture
def grid():
    g = YearGrid(Prefs())
    g.resize(1240, 820)
    g.set_snapshot(YearSnapshot(2026, (Category("c1", "Vacation", "teal"),), (SPAIN,)))
    g.emitted = []
    g.daySelected.connect(lambda d: g.emitted.append(("day", d)))
    g.rangeSelected.connect(lambda a, b: g.emitted.append(("range", a, b)))
    g.eventSelected.connect(lambda eid: g.emitted.append(("event", eid)))
    yield g
    g.deleteLater()


def test_hit_testing_finds_days_and_bars(grid):
    assert grid.day_at(center(grid, date(2026, 3, 10))) == date(2026, 3, 10)
    assert grid.day_at(QPointF(5, 5)) is None
    assert grid.segment_at(center(grid, date(2026, 2, 4))) == SPAIN
    assert grid.segment_at(free_spot(grid, date(2026, 2, 4))) is None


def test_drag_across_days_emits_range(grid):
    press(grid, center(grid, date(2026, 3, 14)))
    move(grid, center(grid, date(2026, 3, 12)))
    move(grid, center(grid, date(2026, 3, 10)))
    assert grid.gesture.state == Dragging(date(2026, 3, 14), date(2026, 3, 10))
    release(grid, center(grid, date(2026, 3, 10)))
    assert grid.emitted == [("range", date(2026, 3, 10), date(2026, 3, 14))]
    assert isinstance(grid.gesture.state, Idle)


def test_click_emits_day(grid):
    pos = free_spot(grid, date(2026, 2, 4))
    press(grid, pos)
    assert isinstance(grid.gesture.state, Armed)
    release(grid, pos)
    assert grid.emitted == [("day", date(2026, 2, 4))]


def test_release_outside_grid_cancels(grid):
    press(grid, center(grid, date(2026, 3, 10)))
    move(grid, center(grid, date(2026, 3, 12)))
    release(grid, QPointF(-20, -20))
    assert grid.emitted == []
    assert isinstance(grid.gesture.state, Idle)


def test_moving_out_of_grid_cancels(grid):
    press(grid, center(grid, date(2026, 3, 10)))
    move(grid, QPointF(grid.width() + 50, 10))
    assert isinstance(grid.gesture.state, Idle)
    release(grid, center(grid, date(2026, 3, 10)))
    assert grid.emitted == []


def test_leaving_widget_cancels(grid):
    press(grid, center(grid, date(2026, 3, 10)))
    grid.leaveEvent(QEvent(QEvent.Type.Leave))
    assert isinstance(grid.gesture.state, Idle)


def test_pressing_event_bar_never_arms_the_day(grid):
    pos = center(grid, date(2026, 2, 4))
    press(grid, pos)
    assert isinstance(grid.gesture.state, Idle)
    release(grid, pos)
    assert grid.emitted == [("event", "e1")]


def test_bar_press_released_elsewhere_selects_nothing(grid):
    press(grid, center(grid, date(2026, 2, 4)))
    release(grid, center(grid, date(2026, 3, 10)))
    assert grid.emitted == []
    assert isinstance(grid.gesture.state, Idle)


def test_secondary_button_does_not_arm(grid):
    press(grid, center(grid, date(2026, 3, 10)), button=Qt.MouseButton.RightButton)
    assert isinstance(grid.gesture.state, Idle)


def test_release_on_another_widget_cancels(grid):
    watcher = DocumentPointerWatcher(grid)
    other = QWidget()
    press(grid, center(grid, date(2026, 3, 10)))
    ev = mouse(QEvent.Type.MouseButtonRelease, QPointF(1, 1))
    assert watcher.eventFilter(other, ev) is False
    assert isinstance(grid.gesture.state, Idle)
    other.deleteLater()


def test_release_on_grid_passes_through_watcher(grid):
    watcher = DocumentPointerWatcher(grid)
    press(grid, center(grid, date(2026, 3, 10)))
    watcher.eventFilter(grid, mouse(QEvent.Type.MouseButtonRelease, QPointF(1, 1)))
    assert isinstance(grid.gesture.state, Armed)


def test_application_deactivate_cancels(grid):
    watcher = DocumentPointerWatcher(grid)
    press(grid, center(grid, date(2026, 3, 10)))
    watcher.eventFilter(grid, QEvent(QEvent.Type.ApplicationDeactivate))
    assert isinstance(grid.gesture.state, Idle)
