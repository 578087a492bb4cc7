"""
Tone side channel for the noise field.

Every few frames the app asks for a short sine blip whose pitch follows the
noise under the top-left corner. Playback is fire-and-forget: nothing here
is awaited by the render loop, and nothing here may raise into it.

Audio: 44100 Hz, mono, signed 16-bit little-endian PCM.
"""

from __future__ import annotations

import asyncio
import io
import math
import os
import shutil
import tempfile
import threading
from typing import Protocol

import numpy as np
from numpy.typing import NDArray
from scipy.io import wavfile

try:
    import pyaudio
    _HAS_PYAUDIO = True
except ImportError:
    pyaudio = None  # type: ignore[assignment]
    _HAS_PYAUDIO = False


# ═══════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════

SAMPLE_RATE: int = 44100
TWO_PI: float = 2.0 * math.pi
PEAK: int = 32767
DEFAULT_DURATION_MS: float = 100.0

# Command-line players tried in order by pick_player("auto")
PLAYER_COMMANDS: list[list[str]] = [
    ["afplay"],
    ["paplay"],
    ["aplay", "-q"],
]
PLAYER_CHOICES: list[str] = ["auto", "command", "pyaudio", "none"]


# ═══════════════════════════════════════════════════════════════════════
#  Synthesis
# ═══════════════════════════════════════════════════════════════════════

def sample_count(duration_ms: float) -> int:
    return int(round(duration_ms / 1000.0 * SAMPLE_RATE))


def sine_samples(freq: float, duration_ms: float = DEFAULT_DURATION_MS) -> NDArray[np.int16]:
    """Full-scale sine at *freq* Hz, rounded to signed 16-bit."""
    t = np.arange(sample_count(duration_ms), dtype=np.float64) / SAMPLE_RATE
    return np.round(np.sin(TWO_PI * freq * t) * PEAK).astype("<i2")


def wav_bytes(samples: NDArray[np.int16]) -> bytes:
    """Encode int16 samples as a RIFF/WAVE file (44-byte PCM header)."""
    buf = io.BytesIO()
    wavfile.write(buf, SAMPLE_RATE, samples)
    return buf.getvalue()


def generate_wav(freq: float, duration_ms: float = DEFAULT_DURATION_MS) -> bytes:
    return wav_bytes(sine_samples(freq, duration_ms))


# ═══════════════════════════════════════════════════════════════════════
#  Players
# ═══════════════════════════════════════════════════════════════════════

class Player(Protocol):
    name: str

    async def play(self, samples: NDArray[np.int16]) -> None: ...

    def stop(self) -> None: ...


class NullPlayer:
    """Swallows every tone. Used for --player none or when nothing is found."""

    name = "none"

    async def play(self, samples: NDArray[np.int16]) -> None:
        return None

    def stop(self) -> None:
        pass


class CommandPlayer:
    """Writes a temporary WAV and hands it to an external player process."""

    def __init__(self, command: list[str]) -> None:
        self.command = list(command)
        self.name = self.command[0]

    async def play(self, samples: NDArray[np.int16]) -> None:
        fd, path = tempfile.mkstemp(suffix=".wav")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(wav_bytes(samples))
            proc = await asyncio.create_subprocess_exec(
                *self.command, path,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

    def stop(self) -> None:
        pass


class PyAudioPlayer:
    """Plays samples through a blocking PyAudio stream on a worker thread."""

    name = "pyaudio"

    def __init__(self) -> None:
        self._pa: pyaudio.PyAudio | None = None  # type: ignore[name-defined]
        # Held for the whole of each blocking write; stop() waits on it
        self._lock = threading.Lock()

    def start(self) -> bool:
        """Open PortAudio. Returns True on success, False on failure."""
        if not _HAS_PYAUDIO:
            return False
        try:
            self._pa = pyaudio.PyAudio()
            return True
        except Exception:
            self._pa = None
            return False

    async def play(self, samples: NDArray[np.int16]) -> None:
        if self._pa is None:
            return
        await asyncio.to_thread(self._write, samples.tobytes())

    def _write(self, data: bytes) -> None:
        with self._lock:
            if self._pa is None:
                return
            stream = self._pa.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=SAMPLE_RATE,
                output=True,
            )
            try:
                stream.write(data)
            finally:
                stream.close()

    def stop(self) -> None:
        """Terminate PortAudio once any in-flight write has finished."""
        with self._lock:
            try:
                if self._pa is not None:
                    self._pa.terminate()
            except Exception:
                pass
            self._pa = None


def find_command() -> list[str] | None:
    for command in PLAYER_COMMANDS:
        if shutil.which(command[0]):
            return command
    return None


def pick_player(choice: str = "auto") -> Player:
    """Resolve a --player choice to a concrete player.

    Anything that cannot be set up degrades to NullPlayer: the tone is a
    garnish and never stops the animation from starting.
    """
    if choice == "none":
        return NullPlayer()
    if choice == "pyaudio":
        player = PyAudioPlayer()
        return player if player.start() else NullPlayer()
    command = find_command()
    if command is not None:
        return CommandPlayer(command)
    if choice == "auto":
        player = PyAudioPlayer()
        if player.start():
            return player
    return NullPlayer()


async def play_tone(
    player: Player,
    freq: float,
    duration_ms: float = DEFAULT_DURATION_MS,
) -> None:
    await player.play(sine_samples(freq, duration_ms))
