#!/usr/bin/env python3
"""
  ~  N O I S E  ~
  A drifting field of 4D simplex noise, drawn in coloured ASCII.

  Every cell of an 80x30 grid samples the same noise field at
  (x / zoomX, y / zoomY, t, w). t moves with the speed you set; w creeps
  along on its own, so the pattern never quite repeats. Every third frame
  the noise under the top-left corner is turned into a short tone.

  Controls:
    left/right  speed down / up        up/down   zoom in / out
    c / v       next / prev palette    z / x     next / prev charset
    s           save preset            l         load preset
    q           quit

  Telemetry is logged to noise_stats.csv beside this script.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import os
import sys
import termios
import time
import tty
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, ClassVar, Protocol, Sequence

import numpy as np
from numpy.typing import NDArray
from opensimplex import OpenSimplex

from noise_tone import (
    DEFAULT_DURATION_MS,
    PLAYER_CHOICES,
    Player,
    pick_player,
    play_tone,
)

# ── Palettes (low → high sample value) ─────────────────────────────────
PALETTES: dict[str, list[str]] = {
    "fire": ["\x1b[38;5;196m", "\x1b[38;5;202m", "\x1b[38;5;208m",
             "\x1b[38;5;214m", "\x1b[38;5;220m", "\x1b[38;5;226m"],
    "ocean": ["\x1b[38;5;17m", "\x1b[38;5;18m", "\x1b[38;5;19m",
              "\x1b[38;5;20m", "\x1b[38;5;21m"],
    "sunset": ["\x1b[38;5;198m", "\x1b[38;5;202m", "\x1b[38;5;208m",
               "\x1b[38;5;215m", "\x1b[38;5;223m"],
    "neon": ["\x1b[38;5;201m", "\x1b[38;5;93m", "\x1b[38;5;99m",
             "\x1b[38;5;105m", "\x1b[38;5;111m"],
    "forest": ["\x1b[38;5;22m", "\x1b[38;5;28m", "\x1b[38;5;34m",
               "\x1b[38;5;40m", "\x1b[38;5;46m"],
    "sandstorm": ["\x1b[38;5;180m", "\x1b[38;5;186m", "\x1b[38;5;192m",
                  "\x1b[38;5;222m", "\x1b[38;5;228m"],
    "ice": ["\x1b[38;5;153m", "\x1b[38;5;159m", "\x1b[38;5;195m",
            "\x1b[38;5;123m", "\x1b[38;5;117m"],
}

# ── Charsets (sparse → dense) ──────────────────────────────────────────
CHARSETS: dict[str, list[str]] = {
    "classic": [" ", ".", ":", "-", "=", "+", "*", "#", "%", "@"],
    "blocks": [" ", "░", "▒", "▓", "█"],
    "lines": [" ", ".", "`", "'", "-", "~", "_", "^", "="],
    "bars": [" ", "|", "!", "I", "H", "#"],
    "wide": [" ", "∘", "○", "◍", "●"],
    "symbols": [" ", ".", "*", "o", "x", "#", "&", "@"],
}

PALETTE_NAMES: list[str] = list(PALETTES)
CHARSET_NAMES: list[str] = list(CHARSETS)

# ── Grid & timing ──────────────────────────────────────────────────────
WIDTH: int = 80
HEIGHT: int = 30
FRAME_INTERVAL: float = 0.05   # seconds per render tick
SECONDARY_STEP: float = 0.01   # w advance per tick, independent of speed

# ── Controls ───────────────────────────────────────────────────────────
DEFAULT_SPEED: float = 0.05
DEFAULT_ZOOM_X: float = 20.0
DEFAULT_ZOOM_Y: float = 10.0
SPEED_STEP: float = 0.01
ZOOM_STEP_X: float = 1.0
ZOOM_STEP_Y: float = 0.5
MIN_ZOOM_X: float = 1.0
MIN_ZOOM_Y: float = 0.5

# ── Tone ───────────────────────────────────────────────────────────────
TONE_EVERY: int = 3
TONE_LOW_HZ: float = 220.0
TONE_HIGH_HZ: float = 440.0

# ── Notices ────────────────────────────────────────────────────────────
NOTICE_FRAMES: int = 40   # ~2 s at 20 fps

# ── ANSI ───────────────────────────────────────────────────────────────
CLEAR = "\x1b[H\x1b[2J"
RESET = "\x1b[0m"
HIDE_CURSOR = "\x1b[?25l"
SHOW_CURSOR = "\x1b[?25h"
EOL = "\r\n"   # raw mode turns off output post-processing

KEY_LEFT = "\x1b[D"
KEY_RIGHT = "\x1b[C"
KEY_UP = "\x1b[A"
KEY_DOWN = "\x1b[B"

LEGEND = (
    "←/→ = speed | ↑/↓ = zoom | c/v = palette | z/x = charset"
    " | s = save | l = load | q = quit"
)

PRESET_PATH = Path("preset.json")
LOG_PATH = Path(__file__).resolve().parent / "noise_stats.csv"


# ═══════════════════════════════════════════════════════════════════════
#  Quantization
# ═══════════════════════════════════════════════════════════════════════

def quantize_index(value: float, n: int) -> int:
    """Bucket a value in [-1, 1] into one of *n* slots, low to high."""
    i = math.floor((value + 1.0) / 2.0 * (n - 1))
    return min(max(i, 0), n - 1)


def quantize_indices(values: NDArray[np.float64], n: int) -> NDArray[np.intp]:
    """Vectorised quantize_index over a whole frame."""
    idx = np.floor((values + 1.0) / 2.0 * (n - 1)).astype(np.intp)
    return np.clip(idx, 0, n - 1)


def glyph_for(charset: str, value: float) -> str:
    table = CHARSETS[charset]
    return table[quantize_index(value, len(table))]


def color_for(palette: str, value: float) -> str:
    table = PALETTES[palette]
    return table[quantize_index(value, len(table))]


def cycle_name(names: Sequence[str], current: str, step: int) -> str:
    """Step through *names* with wrap-around. Unknown names restart at 0."""
    try:
        i = names.index(current)
    except ValueError:
        return names[0]
    return names[(i + step) % len(names)]


# ═══════════════════════════════════════════════════════════════════════
#  State
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ControlState:
    """Everything the keyboard can change. Read by the renderer and tone."""

    speed: float = DEFAULT_SPEED
    zoom_x: float = DEFAULT_ZOOM_X
    zoom_y: float = DEFAULT_ZOOM_Y
    palette: str = PALETTE_NAMES[0]
    charset: str = CHARSET_NAMES[0]

    def slower(self) -> None:
        self.speed = max(self.speed - SPEED_STEP, 0.0)

    def faster(self) -> None:
        self.speed += SPEED_STEP

    def zoom_in(self) -> None:
        self.zoom_x = max(self.zoom_x - ZOOM_STEP_X, MIN_ZOOM_X)
        self.zoom_y = max(self.zoom_y - ZOOM_STEP_Y, MIN_ZOOM_Y)

    def zoom_out(self) -> None:
        self.zoom_x += ZOOM_STEP_X
        self.zoom_y += ZOOM_STEP_Y

    def next_palette(self) -> None:
        self.palette = cycle_name(PALETTE_NAMES, self.palette, 1)

    def prev_palette(self) -> None:
        self.palette = cycle_name(PALETTE_NAMES, self.palette, -1)

    def next_charset(self) -> None:
        self.charset = cycle_name(CHARSET_NAMES, self.charset, 1)

    def prev_charset(self) -> None:
        self.charset = cycle_name(CHARSET_NAMES, self.charset, -1)


@dataclass
class AnimationClock:
    """Two phase axes of the noise field plus a frame counter."""

    primary: float = 0.0    # t: advances by speed
    secondary: float = 0.0  # w: slow drift
    frame_count: int = 0

    def tick(self, speed: float) -> None:
        self.primary += speed
        self.secondary += SECONDARY_STEP
        self.frame_count += 1


# ═══════════════════════════════════════════════════════════════════════
#  Noise field
# ═══════════════════════════════════════════════════════════════════════

class NoiseField:
    """Seeded 4D OpenSimplex noise, sampled per frame or per point."""

    def __init__(self, seed: int | None = None) -> None:
        self.seed: int = int(time.time()) if seed is None else seed
        self._noise = OpenSimplex(seed=self.seed)

    def sample_point(self, x: float, y: float, clock: AnimationClock) -> float:
        return float(self._noise.noise4(x, y, clock.primary, clock.secondary))

    def sample_frame(
        self,
        controls: ControlState,
        clock: AnimationClock,
        width: int = WIDTH,
        height: int = HEIGHT,
    ) -> NDArray[np.float64]:
        """Return a (height, width) array of noise values for this tick."""
        xs = np.arange(width, dtype=np.float64) / controls.zoom_x
        ys = np.arange(height, dtype=np.float64) / controls.zoom_y
        zs = np.array([clock.primary], dtype=np.float64)
        ws = np.array([clock.secondary], dtype=np.float64)
        # noise4array is indexed [w, z, y, x]
        return self._noise.noise4array(xs, ys, zs, ws)[0, 0]


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def status_line(controls: ControlState) -> str:
    return (
        f"Speed: {controls.speed:.2f} | "
        f"Zoom: {controls.zoom_x:.1f}x{controls.zoom_y:.1f} | "
        f"Palette: {controls.palette} | Charset: {controls.charset}"
    )


def render_frame(
    values: NDArray[np.float64],
    controls: ControlState,
    notice: str = "",
) -> str:
    """Turn a frame of noise values into one full-screen repaint."""
    colors = PALETTES[controls.palette]
    glyphs = CHARSETS[controls.charset]
    color_idx = quantize_indices(values, len(colors))
    glyph_idx = quantize_indices(values, len(glyphs))

    rows = [
        "".join(colors[c] + glyphs[g] for c, g in zip(c_row, g_row))
        for c_row, g_row in zip(color_idx.tolist(), glyph_idx.tolist())
    ]
    parts = [CLEAR, EOL.join(rows), EOL, RESET, EOL,
             status_line(controls), EOL, LEGEND, EOL]
    if notice:
        parts += [notice, EOL]
    return "".join(parts)


# ═══════════════════════════════════════════════════════════════════════
#  Tone trigger
# ═══════════════════════════════════════════════════════════════════════

def tone_due(frame_count: int) -> bool:
    return frame_count % TONE_EVERY == 0


def tone_frequency(value: float) -> float:
    """Map a noise value in [-1, 1] linearly onto [220, 440] Hz."""
    return TONE_LOW_HZ + (value + 1.0) / 2.0 * (TONE_HIGH_HZ - TONE_LOW_HZ)


class ToneTrigger:
    """Fires a short tone every third frame without waiting for it."""

    def __init__(self, player: Player, duration_ms: float = DEFAULT_DURATION_MS) -> None:
        self.player = player
        self.duration_ms = duration_ms
        self.last_hz: float = 0.0
        self._pending: set[asyncio.Task[None]] = set()

    def maybe_fire(self, noise: NoiseField, clock: AnimationClock) -> float | None:
        """Spawn a tone if this frame is due. Returns the frequency or None.

        Must be called from inside the running event loop.
        """
        if not tone_due(clock.frame_count):
            return None
        freq = tone_frequency(noise.sample_point(0.0, 0.0, clock))
        task = asyncio.get_running_loop().create_task(
            play_tone(self.player, freq, self.duration_ms)
        )
        self._pending.add(task)
        task.add_done_callback(self._discard)
        self.last_hz = freq
        return freq

    def _discard(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        # Playback outcome is deliberately dropped; a failed tone is silence.
        if not task.cancelled():
            task.exception()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def stop(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self.player.stop()


# ═══════════════════════════════════════════════════════════════════════
#  Presets
# ═══════════════════════════════════════════════════════════════════════

PRESET_KEYS: tuple[str, ...] = ("speed", "zoomX", "zoomY", "palette", "charset")


class PresetError(Exception):
    """A preset file is missing, unreadable or not a preset record."""


def save_preset(controls: ControlState, path: Path = PRESET_PATH) -> None:
    preset = {
        "speed": controls.speed,
        "zoomX": controls.zoom_x,
        "zoomY": controls.zoom_y,
        "palette": controls.palette,
        "charset": controls.charset,
    }
    path.write_text(json.dumps(preset, indent=2))


def _number(data: dict[str, Any], key: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PresetError(f"{key} is not a number")
    if not math.isfinite(value):
        raise PresetError(f"{key} is not finite")
    return float(value)


def load_preset(controls: ControlState, path: Path = PRESET_PATH) -> list[str]:
    """Apply a saved preset to *controls*. Returns warnings, if any.

    The record is checked in full before anything is assigned, so on
    PresetError the controls are untouched. Names that no longer exist
    keep the current palette/charset instead of failing the whole load.
    """
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        raise PresetError(e.strerror or str(e)) from e
    except json.JSONDecodeError as e:
        raise PresetError(f"invalid JSON ({e.msg})") from e

    if not isinstance(data, dict):
        raise PresetError("not a preset record")
    missing = [k for k in PRESET_KEYS if k not in data]
    if missing:
        raise PresetError(f"missing {', '.join(missing)}")

    speed = _number(data, "speed")
    zoom_x = _number(data, "zoomX")
    zoom_y = _number(data, "zoomY")
    palette = data["palette"]
    charset = data["charset"]

    warnings: list[str] = []
    if palette not in PALETTES:
        warnings.append(f"unknown palette {palette!r}, keeping {controls.palette}")
        palette = controls.palette
    if charset not in CHARSETS:
        warnings.append(f"unknown charset {charset!r}, keeping {controls.charset}")
        charset = controls.charset

    controls.speed = max(speed, 0.0)
    controls.zoom_x = max(zoom_x, MIN_ZOOM_X)
    controls.zoom_y = max(zoom_y, MIN_ZOOM_Y)
    controls.palette = palette
    controls.charset = charset
    return warnings


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes frame telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = (
        "frame,time_s,speed,zoom_x,zoom_y,palette,charset,tone_hz,event\n"
    )

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        if self._path is None:
            return
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(
        self,
        frame: int,
        controls: ControlState,
        tone_hz: float = 0.0,
        event: str = "",
    ) -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        try:
            self._fh.write(
                f"{frame},{t:.2f},{controls.speed:.2f},{controls.zoom_x:.1f},"
                f"{controls.zoom_y:.1f},{controls.palette},{controls.charset},"
                f"{tone_hz:.1f},{event}\n"
            )
            if event:
                self._fh.flush()
        except OSError:
            self.close()

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Terminal
# ═══════════════════════════════════════════════════════════════════════

def split_keys(data: bytes) -> list[str]:
    """Break one read into key tokens: 3-byte CSI sequences or single chars."""
    text = data.decode("utf-8", errors="replace")
    keys: list[str] = []
    i = 0
    while i < len(text):
        if text[i] == "\x1b" and text[i + 1:i + 2] == "[" and i + 2 < len(text):
            keys.append(text[i:i + 3])
            i += 3
        else:
            keys.append(text[i])
            i += 1
    return keys


class Screen(Protocol):
    def enter_raw(self) -> None: ...
    def restore(self) -> None: ...
    def write(self, text: str) -> None: ...
    async def read_key(self) -> str: ...


class Terminal:
    """Raw-mode stdin as an async key stream, stdout as a plain writer."""

    def __init__(self, stdin: IO[str] = sys.stdin, stdout: IO[str] = sys.stdout) -> None:
        self._in = stdin
        self._out = stdout
        self._saved: list[Any] | None = None
        self._keys: asyncio.Queue[str] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    def enter_raw(self) -> None:
        fd = self._in.fileno()
        self._saved = termios.tcgetattr(fd)
        tty.setraw(fd)
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(fd, self._on_readable)
        self.write(HIDE_CURSOR)

    def restore(self) -> None:
        if self._saved is None:
            return
        fd = self._in.fileno()
        if self._loop is not None:
            self._loop.remove_reader(fd)
            self._loop = None
        saved, self._saved = self._saved, None
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
            self.write(RESET + SHOW_CURSOR)
        except (termios.error, OSError):
            pass  # terminal already gone

    def write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    async def read_key(self) -> str:
        return await self._keys.get()

    def _on_readable(self) -> None:
        try:
            data = os.read(self._in.fileno(), 64)
        except OSError:
            data = b""  # hangup reads as EIO on Linux ptys
        if not data:
            # stdin closed: nothing else can ever quit us
            self._loop.remove_reader(self._in.fileno())
            self._keys.put_nowait("q")
            return
        for key in split_keys(data):
            self._keys.put_nowait(key)


# ═══════════════════════════════════════════════════════════════════════
#  The app
# ═══════════════════════════════════════════════════════════════════════

class NoiseAscii:
    """
    Render timer and key dispatcher sharing one ControlState.

    Both run as tasks on the same asyncio loop. Neither awaits in the
    middle of touching the controls, so a key press is always applied
    whole between two frames.
    """

    def __init__(
        self,
        screen: Screen,
        noise: NoiseField,
        tone: ToneTrigger,
        controls: ControlState | None = None,
        logger: StatsLogger | None = None,
        preset_path: Path = PRESET_PATH,
        interval: float = FRAME_INTERVAL,
    ) -> None:
        self.screen = screen
        self.noise = noise
        self.tone = tone
        self.controls = controls if controls is not None else ControlState()
        self.clock = AnimationClock()
        self.logger = logger if logger is not None else StatsLogger(None)
        self.preset_path = preset_path
        self.interval = interval
        self.running: bool = True
        self.notice: str = ""
        self._notice_frames: int = 0

    # ── Notices ────────────────────────────────────────────────────────

    def announce(self, text: str) -> None:
        self.notice = text
        self._notice_frames = NOTICE_FRAMES

    def _age_notice(self) -> None:
        if self._notice_frames > 0:
            self._notice_frames -= 1
            if self._notice_frames == 0:
                self.notice = ""

    # ── Render path ────────────────────────────────────────────────────

    def frame(self) -> str:
        values = self.noise.sample_frame(self.controls, self.clock)
        return render_frame(values, self.controls, self.notice)

    def step(self) -> None:
        """Draw one frame, maybe fire a tone, then advance the clock."""
        self.screen.write(self.frame())
        self._age_notice()

        hz = self.tone.maybe_fire(self.noise, self.clock)
        if self.clock.frame_count % 20 == 0:
            self.logger.log(self.clock.frame_count, self.controls, hz or 0.0)

        self.clock.tick(self.controls.speed)

    def tick(self) -> bool:
        """Render a frame unless we have quit. Returns True if drawn."""
        if not self.running:
            return False
        self.step()
        return True

    async def render_loop(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while self.running:
            self.tick()
            deadline += self.interval
            await asyncio.sleep(max(0.0, deadline - loop.time()))

    # ── Input path ─────────────────────────────────────────────────────

    def handle_key(self, key: str) -> None:
        c = self.controls
        if key == KEY_LEFT:
            c.slower()
        elif key == KEY_RIGHT:
            c.faster()
        elif key == KEY_UP:
            c.zoom_in()
        elif key == KEY_DOWN:
            c.zoom_out()
        elif key == "c":
            c.next_palette()
        elif key == "v":
            c.prev_palette()
        elif key == "z":
            c.next_charset()
        elif key == "x":
            c.prev_charset()
        elif key == "s":
            self.save()
        elif key == "l":
            self.load()
        elif key == "q":
            self.quit()

    async def input_loop(self) -> None:
        while self.running:
            key = await self.screen.read_key()
            self.handle_key(key)

    # ── Side effects ───────────────────────────────────────────────────

    def save(self) -> None:
        try:
            save_preset(self.controls, self.preset_path)
        except OSError as e:
            self.announce(f"Failed to save {self.preset_path}: {e.strerror or e}")
            self.logger.log(self.clock.frame_count, self.controls, event="save-failed")
            return
        self.announce(f"Preset saved to {self.preset_path}")
        self.logger.log(self.clock.frame_count, self.controls, event="save")

    def load(self) -> None:
        try:
            warnings = load_preset(self.controls, self.preset_path)
        except PresetError as e:
            self.announce(f"Failed to load {self.preset_path}: {e}")
            self.logger.log(self.clock.frame_count, self.controls, event="load-failed")
            return
        msg = f"Preset loaded from {self.preset_path}"
        if warnings:
            msg += " (" + "; ".join(warnings) + ")"
        self.announce(msg)
        self.logger.log(self.clock.frame_count, self.controls, event="load")

    def quit(self) -> None:
        self.running = False
        self.logger.log(self.clock.frame_count, self.controls, event="quit")
        self.screen.restore()
        self.screen.write(EOL + "Goodbye!" + EOL)

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def run(self) -> None:
        self.screen.enter_raw()
        render = asyncio.create_task(self.render_loop())
        try:
            await self.input_loop()
        finally:
            self.running = False
            render.cancel()
            try:
                await render
            except asyncio.CancelledError:
                pass
            self.tone.stop()
            self.screen.restore()
            self.logger.close()


# ═══════════════════════════════════════════════════════════════════════
#  Main
# ═══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Animated 4D noise in the terminal")
    parser.add_argument("--seed", type=int, default=None,
                        help="Noise seed (default: current time)")
    parser.add_argument("--fps", type=float, default=1.0 / FRAME_INTERVAL,
                        help=f"Frames per second (default: {1.0 / FRAME_INTERVAL:g})")
    parser.add_argument("--preset", type=Path, default=PRESET_PATH,
                        help=f"Preset file for s/l (default: {PRESET_PATH})")
    parser.add_argument("--player", choices=PLAYER_CHOICES, default="auto",
                        help="Tone output (default: auto)")
    parser.add_argument("--tone-ms", type=float, default=DEFAULT_DURATION_MS,
                        help=f"Tone length in ms (default: {DEFAULT_DURATION_MS:g})")
    parser.add_argument("--log", type=Path, default=LOG_PATH,
                        help=f"Telemetry CSV (default: {LOG_PATH.name} beside this script)")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.fps <= 0:
        print("Error: --fps must be positive", file=sys.stderr)
        return 1
    if not sys.stdin.isatty():
        print("Error: stdin is not a terminal", file=sys.stderr)
        return 1

    logger = StatsLogger(args.log)
    logger.open()
    app = NoiseAscii(
        screen=Terminal(),
        noise=NoiseField(args.seed),
        tone=ToneTrigger(pick_player(args.player), args.tone_ms),
        logger=logger,
        preset_path=args.preset,
        interval=1.0 / args.fps,
    )
    asyncio.run(app.run())
    return 0


if __name__ == "__main__":
    sys.exit(main())
