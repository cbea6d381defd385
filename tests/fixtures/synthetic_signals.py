"""
Synthetic signal generators for detector and session tests.

Builds MediaPipe-style normalized face landmarks with a chosen gaze ratio and
head tilt, blendshape maps, constant-amplitude audio buffers, uniform frames,
plus scripted stand-ins for the landmark detector, media sources and clock.
Everything here is deterministic.

Indices follow the MediaPipe face mesh: 1 = nose tip, 33 / 263 = outer eye corners.
"""

import math
import threading
from typing import List, Optional, Sequence

import numpy as np

from utils.landmark_detector_interface import (
    LandmarkDetectorInterface,
    LandmarkDetectionResult,
    FaceLandmarks,
    HandLandmarks,
)

NUM_FACE_LANDMARKS = 478
EYE_SPAN = 0.2


def make_face_landmarks(ratio: float = 0.5, tilt_deg: float = 0.0) -> np.ndarray:
    """
    478x3 landmarks where the nose sits at `ratio` between the eye corners and
    the eye line is rolled by `tilt_deg`.
    """
    lm = np.zeros((NUM_FACE_LANDMARKS, 3), dtype=np.float64)
    lm[:, 0] = 0.5
    lm[:, 1] = 0.5
    rx, ry = 0.4, 0.45
    a = math.radians(tilt_deg)
    dx, dy = EYE_SPAN * math.cos(a), EYE_SPAN * math.sin(a)
    lm[33] = [rx, ry, 0.0]
    lm[263] = [rx + dx, ry + dy, 0.0]
    lm[1] = [rx + ratio * abs(dx), 0.55, -0.05]
    return lm


def make_blendshapes(blink: float = 0.0, brow_down: float = 0.0, **overrides) -> dict:
    """Blendshape map with symmetric blink/brow scores; overrides set single categories."""
    shapes = {
        "eyeBlinkLeft": blink,
        "eyeBlinkRight": blink,
        "browDownLeft": brow_down,
        "browDownRight": brow_down,
    }
    shapes.update(overrides)
    return shapes


def make_face(
    ratio: float = 0.5,
    tilt_deg: float = 0.0,
    blink: float = 0.0,
    brow_down: float = 0.0,
    with_blendshapes: bool = True,
) -> FaceLandmarks:
    return FaceLandmarks(
        landmarks=make_face_landmarks(ratio, tilt_deg),
        blendshapes=make_blendshapes(blink, brow_down) if with_blendshapes else None,
    )


def make_hand() -> HandLandmarks:
    return HandLandmarks(landmarks=np.full((21, 3), 0.5, dtype=np.float64))


def make_detection(
    face: Optional[FaceLandmarks] = None,
    hands: int = 0,
) -> LandmarkDetectionResult:
    return LandmarkDetectionResult(
        faces=[face] if face is not None else [],
        hands=[make_hand() for _ in range(hands)],
    )


def audio_buffer(rms: float, size: int = 2048) -> np.ndarray:
    """Alternating +/- rms samples: the buffer's RMS is exactly `rms`."""
    buf = np.full(size, rms, dtype=np.float64)
    buf[1::2] = -rms
    return buf


def gray_frame(value: int = 128, shape=(480, 640, 3)) -> np.ndarray:
    return np.full(shape, value, dtype=np.uint8)


class FakeClock:
    """Manual monotonic clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = float(start)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeLandmarkDetector(LandmarkDetectorInterface):
    """
    Scripted detector: returns results in order, then keeps repeating the last
    one (or an empty result when the script is empty). Optionally raises on
    chosen call numbers (1-based).
    """

    def __init__(self, results: Optional[List[LandmarkDetectionResult]] = None, fail_on_calls: Sequence[int] = ()):
        self.results = list(results or [])
        self.fail_on_calls = set(fail_on_calls)
        self.calls = 0
        self.timestamps: List[int] = []
        self.resets = 0
        self.closed = False

    def detect(self, frame, timestamp_ms):
        self.calls += 1
        self.timestamps.append(timestamp_ms)
        if self.calls in self.fail_on_calls:
            raise RuntimeError(f"scripted failure on call {self.calls}")
        if not self.results:
            return LandmarkDetectionResult()
        idx = min(self.calls - 1, len(self.results) - 1)
        return self.results[idx]

    def is_available(self):
        return not self.closed

    def get_name(self):
        return "fake"

    def reset(self):
        self.resets += 1

    def close(self):
        self.closed = True


class FakeVideoHandler:
    """Stand-in for VideoSourceHandler that always has a gray frame."""

    def __init__(self, opens: bool = True, value: int = 128):
        self.opens = opens
        self.value = value
        self.source_type = None
        self.initialized_with = []
        self.release_count = 0

    def initialize_source(self, source_type, source_path=None):
        self.initialized_with.append((source_type, source_path))
        if self.opens:
            self.source_type = source_type
        return self.opens

    def read_frame(self):
        if self.source_type is None:
            return False, None
        return True, gray_frame(self.value, shape=(48, 64, 3))

    def release(self):
        self.release_count += 1
        self.source_type = None


class FakeAudioHandler:
    """Stand-in for AudioSourceHandler returning a constant-RMS buffer."""

    def __init__(self, opens: bool = True, rms: float = 0.0):
        self.opens = opens
        self.rms = rms
        self.source_type = None
        self.release_count = 0

    def initialize_source(self, source_type):
        if self.opens:
            self.source_type = source_type
        return self.opens

    def read_buffer(self):
        return audio_buffer(self.rms)

    def release(self):
        self.release_count += 1
        self.source_type = None
