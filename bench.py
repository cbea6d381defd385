#!/usr/bin/env python3
"""
Benchmark SignalFusionEngine.tick() on synthetic inputs.

Usage: python bench.py [N]
  N = number of ticks (default 1000).

Run from project root. Landmark inference is not included: each tick gets a
pre-built detection result, a 2048-sample audio buffer and a 640x480 frame, so
the number is the per-tick overhead of the detectors, sampling and aggregation.
"""
import os
import sys
import time

# Project root on path (script lives at project root)
_root = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _root)

from utils.signal_fusion import SignalFusionEngine
from tests.fixtures.synthetic_signals import make_face, make_detection, audio_buffer, gray_frame


def main():
    n = 1000
    if len(sys.argv) > 1:
        try:
            n = int(sys.argv[1])
        except ValueError:
            pass
    engine = SignalFusionEngine(telemetry=None)
    engine.start(0.0)
    detections = [
        make_detection(make_face(ratio=0.5, blink=0.0), hands=0),
        make_detection(make_face(ratio=0.8, blink=0.9, brow_down=0.6), hands=1),
    ]
    buffers = [audio_buffer(0.01), audio_buffer(0.12)]
    frame = gray_frame(128)
    # Warmup run
    for i in range(30):
        engine.tick(i * 33.0, detections[i % 2], buffers[i % 2], frame)
    engine.start(0.0)
    start = time.perf_counter()
    for i in range(n):
        engine.tick(i * 33.0, detections[i % 2], buffers[(i // 7) % 2], frame)
    elapsed = time.perf_counter() - start
    per_call_ms = (elapsed / n) * 1000
    counters = engine.detectors.counters()
    print(f"tick() x{n}: {elapsed:.3f}s total, {per_call_ms:.3f} ms/call")
    print(f"  looks={counters.look_count} blinks={counters.blink_count} "
          f"thumps={counters.thump_count} snapshots={len(engine.aggregator.history())}")


if __name__ == "__main__":
    main()
