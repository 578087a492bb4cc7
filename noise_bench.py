#!/usr/bin/env python3
"""
Profiling harness for the noise field.

Runs the sample + render pipeline headlessly, either under cProfile or
with a per-frame breakdown of where the time goes.

Usage:
  python3 noise_bench.py                  # 500 frames, cProfile summary
  python3 noise_bench.py -n 1000          # 1000 frames
  python3 noise_bench.py --line-timing    # per-frame component timing
  python3 noise_bench.py --dump prof.out  # dump cProfile binary for snakeviz etc.
"""

from __future__ import annotations

import argparse
import asyncio
import cProfile
import pstats
import time
from io import StringIO

import numpy as np

from noise_ascii import (
    CHARSET_NAMES,
    PALETTE_NAMES,
    ControlState,
    NoiseAscii,
    NoiseField,
    ToneTrigger,
    render_frame,
)
from noise_tone import NullPlayer


# ── Fake terminal for headless runs ─────────────────────────────────────

class FakeTerminal:
    """Stand-in for Terminal: records output, serves keys from a queue."""

    def __init__(self, keep: bool = True) -> None:
        self.keep = keep
        self.output: list[str] = []
        self.writes: int = 0
        self.bytes_written: int = 0
        self.raw: bool = False
        self.restored: int = 0
        self._keys: asyncio.Queue[str] = asyncio.Queue()

    def feed(self, *keys: str) -> None:
        for key in keys:
            self._keys.put_nowait(key)

    def enter_raw(self) -> None:
        self.raw = True

    def restore(self) -> None:
        if self.raw:
            self.raw = False
            self.restored += 1

    def write(self, text: str) -> None:
        self.writes += 1
        self.bytes_written += len(text)
        if self.keep:
            self.output.append(text)

    async def read_key(self) -> str:
        return await self._keys.get()


def make_app(
    seed: int = 1234,
    keep: bool = False,
    screen: FakeTerminal | None = None,
) -> NoiseAscii:
    return NoiseAscii(
        screen=screen if screen is not None else FakeTerminal(keep=keep),
        noise=NoiseField(seed),
        tone=ToneTrigger(NullPlayer()),
    )


def time_components(n_frames: int, seed: int) -> dict[str, float]:
    """Average milliseconds per frame spent sampling vs rendering."""
    app = make_app(seed)
    noise = app.noise
    sample_ms: list[float] = []
    render_ms: list[float] = []

    for i in range(n_frames):
        # Wander through palettes and charsets so every table gets timed
        app.controls.palette = PALETTE_NAMES[i % len(PALETTE_NAMES)]
        app.controls.charset = CHARSET_NAMES[i % len(CHARSET_NAMES)]

        t0 = time.perf_counter()
        values = noise.sample_frame(app.controls, app.clock)
        t1 = time.perf_counter()
        render_frame(values, app.controls)
        t2 = time.perf_counter()

        sample_ms.append((t1 - t0) * 1000.0)
        render_ms.append((t2 - t1) * 1000.0)
        app.clock.tick(app.controls.speed)

    return {
        "sample": float(np.mean(sample_ms)),
        "render": float(np.mean(render_ms)),
        "sample_p95": float(np.percentile(sample_ms, 95)),
        "render_p95": float(np.percentile(render_ms, 95)),
    }


async def _run_frames(app: NoiseAscii, n_frames: int) -> None:
    for _ in range(n_frames):
        app.step()
    app.tone.stop()


def run_benchmark(
    n_frames: int = 500,
    seed: int = 1234,
    line_timing: bool = False,
    dump_path: str | None = None,
) -> None:
    controls = ControlState()
    print(f"Benchmark: {n_frames} frames, seed {seed}, "
          f"zoom {controls.zoom_x:g}x{controls.zoom_y:g}")

    if line_timing:
        timings = time_components(n_frames, seed)
        budget = 50.0
        total = timings["sample"] + timings["render"]
        print(f"  sample : {timings['sample']:7.2f} ms  (p95 {timings['sample_p95']:.2f})")
        print(f"  render : {timings['render']:7.2f} ms  (p95 {timings['render_p95']:.2f})")
        print(f"  total  : {total:7.2f} ms  of {budget:.0f} ms frame budget")
        return

    screen = FakeTerminal(keep=False)
    app = make_app(seed, screen=screen)
    prof = cProfile.Profile()
    t0 = time.perf_counter()
    prof.enable()
    asyncio.run(_run_frames(app, n_frames))
    prof.disable()
    elapsed = time.perf_counter() - t0

    fps = n_frames / elapsed if elapsed > 0 else 0.0
    print(f"  {elapsed:.2f}s elapsed, {fps:.1f} fps, "
          f"{screen.bytes_written / max(1, screen.writes):,.0f} chars/frame")

    if dump_path:
        prof.dump_stats(dump_path)
        print(f"  profile written to {dump_path}")

    buf = StringIO()
    ps = pstats.Stats(prof, stream=buf).sort_stats("cumulative")
    ps.print_stats(25)
    print("\n=== By Cumulative Time ===")
    print(buf.getvalue())


def main() -> None:
    parser = argparse.ArgumentParser(description="Profile the noise field renderer")
    parser.add_argument("-n", "--frames", type=int, default=500,
                        help="Number of frames to render (default: 500)")
    parser.add_argument("--seed", type=int, default=1234,
                        help="Noise seed (default: 1234)")
    parser.add_argument("--line-timing", action="store_true",
                        help="Per-frame component timing instead of cProfile")
    parser.add_argument("--dump", type=str, default=None,
                        help="Dump cProfile binary to this path")
    args = parser.parse_args()

    run_benchmark(
        n_frames=args.frames,
        seed=args.seed,
        line_timing=args.line_timing,
        dump_path=args.dump,
    )


if __name__ == "__main__":
    main()
