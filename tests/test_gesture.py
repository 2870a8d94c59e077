from datetime import date

from vantage import Armed, DaySelection, Dragging, EventSelection, GestureMachine, Idle, RangeSelection

D1 = date(2026, 3, 10)
D2 = date(2026, 3, 11)
D3 = date(2026, 3, 14)


def test_click_selects_single_day():
    g = GestureMachine(click_tolerance=5)
    g.pointer_down(D1, (100, 100))
    assert isinstance(g.state, Armed)
    assert g.pointer_up((102, 101)) == DaySelection(D1)
    assert isinstance(g.state, Idle)


def test_jitter_beyond_tolerance_without_leaving_cell_selects_nothing():
    g = GestureMachine(click_tolerance=5)
    g.pointer_down(D1, (100, 100))
    g.pointer_enter(D1)
    assert g.pointer_up((104, 104)) is None  # ~5.66px
    assert isinstance(g.state, Idle)


def test_drag_backwards_yields_normalized_range():
    g = GestureMachine()
    g.pointer_down(D3, (0, 0))
    assert g.pointer_enter(D2)
    assert g.state == Dragging(D3, D2)
    assert g.preview_range() == (D2, D3)
    assert g.pointer_up((500, 0)) == RangeSelection(D2, D3)


def test_drag_back_to_anchor_is_a_one_day_range():
    g = GestureMachine()
    g.pointer_down(D1, (0, 0))
    g.pointer_enter(D2)
    g.pointer_enter(D1)
    assert g.pointer_up((0, 0)) == RangeSelection(D1, D1)


def test_reentering_anchor_while_armed_stays_armed():
    g = GestureMachine()
    g.pointer_down(D1, (0, 0))
    assert not g.pointer_enter(D1)
    assert isinstance(g.state, Armed)


def test_secondary_button_and_repeated_press_are_ignored():
    g = GestureMachine()
    assert not g.pointer_down(D1, (0, 0), primary=False)
    assert isinstance(g.state, Idle)
    g.pointer_down(D1, (0, 0))
    g.pointer_enter(D2)
    assert not g.pointer_down(D3, (10, 10))
    assert g.state == Dragging(D1, D2)


def test_cancel_emits_nothing_and_resets():
    g = GestureMachine()
    g.pointer_down(D1, (0, 0))
    g.pointer_enter(D3)
    assert g.cancel()
    assert isinstance(g.state, Idle)
    assert g.pointer_up((0, 0)) is None
    assert not g.cancel()


def test_pointer_enter_while_idle_does_nothing():
    g = GestureMachine()
    assert not g.pointer_enter(D1)
    assert g.preview_range() is None


def test_event_click_never_arms_a_day():
    g = GestureMachine()
    assert g.event_clicked("ev-1") == EventSelection("ev-1")
    assert isinstance(g.state, Idle)
    g.pointer_down(D1, (0, 0))
    assert g.event_clicked("ev-1") is None
