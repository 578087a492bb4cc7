import pytest

from noise_ascii import (
    KEY_DOWN,
    KEY_LEFT,
    KEY_RIGHT,
    KEY_UP,
    MIN_ZOOM_X,
    MIN_ZOOM_Y,
    PALETTE_NAMES,
    SECONDARY_STEP,
    AnimationClock,
    ControlState,
    tone_due,
)
from noise_bench import make_app


def test_defaults():
    c = ControlState()
    assert c.speed == pytest.approx(0.05)
    assert (c.zoom_x, c.zoom_y) == (20.0, 10.0)
    assert (c.palette, c.charset) == ("fire", "classic")


def test_speed_never_goes_negative():
    app = make_app()
    for _ in range(50):
        app.handle_key(KEY_LEFT)
        assert app.controls.speed >= 0.0
    assert app.controls.speed == 0.0


def test_speed_and_palette_scenario():
    app = make_app()
    app.controls = ControlState(speed=0.05, zoom_x=20, zoom_y=10,
                                palette="fire", charset="classic")
    for _ in range(5):
        app.handle_key(KEY_RIGHT)
    assert app.controls.speed == pytest.approx(0.10)

    app.handle_key("c")
    assert app.controls.palette == PALETTE_NAMES[1]

    app.handle_key("q")
    assert app.running is False
    writes = app.screen.writes
    assert app.tick() is False
    assert app.screen.writes == writes


def test_zoom_steps_and_floor():
    app = make_app()
    app.handle_key(KEY_DOWN)
    assert (app.controls.zoom_x, app.controls.zoom_y) == (21.0, 10.5)
    app.handle_key(KEY_UP)
    app.handle_key(KEY_UP)
    assert (app.controls.zoom_x, app.controls.zoom_y) == (19.0, 9.5)
    for _ in range(100):
        app.handle_key(KEY_UP)
    assert app.controls.zoom_x == MIN_ZOOM_X
    assert app.controls.zoom_y == MIN_ZOOM_Y


def test_charset_keys_and_unknown_keys():
    app = make_app()
    before = ControlState(**vars(app.controls))
    for key in ("a", "\x1b[Z", "Q", "\x1b", " "):
        app.handle_key(key)
    assert app.controls == before

    app.handle_key("z")
    assert app.controls.charset == "blocks"
    app.handle_key("x")
    app.handle_key("x")
    assert app.controls.charset == "symbols"
    app.handle_key("v")
    assert app.controls.palette == PALETTE_NAMES[-1]


def test_clock_phases_never_decrease():
    clock = AnimationClock()
    controls = ControlState()
    prev = (clock.primary, clock.secondary)
    for i in range(30):
        if i == 10:
            controls.speed = 0.0
        if i == 20:
            controls.speed = 0.3
        clock.tick(controls.speed)
        assert clock.primary >= prev[0]
        assert clock.secondary > prev[1]
        prev = (clock.primary, clock.secondary)
    assert clock.frame_count == 30
    assert clock.secondary == pytest.approx(30 * SECONDARY_STEP)


def test_tone_due_every_third_frame():
    due = [n for n in range(13) if tone_due(n)]
    assert due == [0, 3, 6, 9, 12]
