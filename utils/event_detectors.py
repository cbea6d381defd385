"""
Event Detectors Module

Edge-triggered counters that turn continuous per-tick signals into discrete,
monotonic session counts:

- Gaze/look:    nose between the eye corners  -> counted on entering "looking"
- Blink:        both eyeBlink blendshapes high -> counted when the eyes reopen
- Brow furrow:  both browDown blendshapes high -> counted on onset
- Hand fidget:  any hand in frame              -> counted when a hand appears
- Impact:       RMS spike, debounced           -> counted at most once per window
- Voice:        RMS above speaking level       -> one voice-second per interval

Each detector is an explicit two-phase machine (IDLE / ACTIVE) and is the only
writer of its own counter. A signal of None means "unknown this tick" (e.g. no
face found): the phase is held and nothing is counted.

Landmark indices follow the MediaPipe face mesh: 1 = nose tip, 33 = right eye
outer corner, 263 = left eye outer corner (image coordinates, normalized).
"""

import math
from enum import Enum
from typing import Optional, Dict

import numpy as np

import config
from utils.session_models import EventCounters

NOSE_TIP = 1
RIGHT_EYE_OUTER = 33
LEFT_EYE_OUTER = 263

# Eye-corner span below this (normalized units) is treated as degenerate.
_MIN_EYE_SPAN = 1e-6


class DetectorPhase(Enum):
    """Whether a detector currently considers itself inside its active state."""
    IDLE = "idle"
    ACTIVE = "active"


class CountedEdge(Enum):
    """Which transition increments the counter."""
    RISING = "rising"    # IDLE -> ACTIVE
    FALLING = "falling"  # ACTIVE -> IDLE


# ---------------------------------------------------------------------------
# Landmark geometry
# ---------------------------------------------------------------------------

def _has_indices(landmarks: Optional[np.ndarray]) -> bool:
    return landmarks is not None and len(landmarks) > LEFT_EYE_OUTER


def gaze_ratio(landmarks: Optional[np.ndarray]) -> Optional[float]:
    """
    Horizontal position of the nose tip between the two outer eye corners
    (0 = at the right-eye corner, 1 = at the left-eye corner).

    Returns None when the landmarks are missing or the eye span is zero.
    """
    if not _has_indices(landmarks):
        return None
    nose_x = float(landmarks[NOSE_TIP][0])
    right_x = float(landmarks[RIGHT_EYE_OUTER][0])
    left_x = float(landmarks[LEFT_EYE_OUTER][0])
    span = abs(left_x - right_x)
    if span < _MIN_EYE_SPAN:
        return None
    ratio = abs(nose_x - right_x) / span
    return ratio if math.isfinite(ratio) else None


def head_tilt_degrees(landmarks: Optional[np.ndarray]) -> Optional[float]:
    """Absolute roll angle of the eye-corner line, in degrees. No direction."""
    if not _has_indices(landmarks):
        return None
    dy = float(landmarks[LEFT_EYE_OUTER][1]) - float(landmarks[RIGHT_EYE_OUTER][1])
    dx = float(landmarks[LEFT_EYE_OUTER][0]) - float(landmarks[RIGHT_EYE_OUTER][0])
    angle = abs(math.degrees(math.atan2(dy, dx)))
    return angle if math.isfinite(angle) else None


def both_above(blendshapes: Dict[str, float], left: str, right: str, threshold: float) -> bool:
    """True when both named blendshape scores exceed the threshold (missing = 0)."""
    return float(blendshapes.get(left, 0.0)) > threshold and float(blendshapes.get(right, 0.0)) > threshold


# ---------------------------------------------------------------------------
# Generic edge-triggered counter
# ---------------------------------------------------------------------------

class EdgeTriggeredCounter:
    """
    Two-phase hysteresis machine with a monotonic counter.

    transition(signal) moves IDLE <-> ACTIVE and increments the counter only
    on the configured edge; a held state never re-fires.
    """

    def __init__(self, name: str, counted_edge: CountedEdge = CountedEdge.RISING):
        self.name = name
        self.counted_edge = counted_edge
        self.phase = DetectorPhase.IDLE
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def is_active(self) -> bool:
        return self.phase == DetectorPhase.ACTIVE

    def reset(self) -> None:
        self.phase = DetectorPhase.IDLE
        self._count = 0

    def transition(self, signal: Optional[bool]) -> bool:
        """
        Feed one tick's signal.

        Args:
            signal: True/False for the current state, None when unknown this tick

        Returns:
            True if this call incremented the counter
        """
        if signal is None:
            return False
        new_phase = DetectorPhase.ACTIVE if signal else DetectorPhase.IDLE
        if new_phase == self.phase:
            return False
        self.phase = new_phase
        if self.counted_edge == CountedEdge.RISING:
            fired = new_phase == DetectorPhase.ACTIVE
        else:
            fired = new_phase == DetectorPhase.IDLE
        if fired:
            self._count += 1
        return fired


# ---------------------------------------------------------------------------
# Visual detectors
# ---------------------------------------------------------------------------

class GazeDetector(EdgeTriggeredCounter):
    """Counts look-starts: the gaze ratio entering (min, max)."""

    def __init__(self, ratio_min: Optional[float] = None, ratio_max: Optional[float] = None):
        super().__init__("look", CountedEdge.RISING)
        self.ratio_min = float(config.GAZE_RATIO_MIN if ratio_min is None else ratio_min)
        self.ratio_max = float(config.GAZE_RATIO_MAX if ratio_max is None else ratio_max)
        self.last_ratio: Optional[float] = None

    def reset(self) -> None:
        super().reset()
        self.last_ratio = None

    def is_looking_ratio(self, ratio: Optional[float]) -> bool:
        return ratio is not None and self.ratio_min < ratio < self.ratio_max

    def update(self, landmarks: Optional[np.ndarray]) -> bool:
        """No face holds the last state; a face with a degenerate eye span counts as not looking."""
        if landmarks is None:
            return self.transition(None)
        ratio = gaze_ratio(landmarks)
        self.last_ratio = ratio
        return self.transition(self.is_looking_ratio(ratio))


class BlinkDetector(EdgeTriggeredCounter):
    """Counts completed blinks: eyes closed, then reopened (falling edge)."""

    def __init__(self, threshold: Optional[float] = None):
        super().__init__("blink", CountedEdge.FALLING)
        self.threshold = float(config.BLINK_THRESHOLD if threshold is None else threshold)

    def update(self, blendshapes: Optional[Dict[str, float]]) -> bool:
        if blendshapes is None:
            return self.transition(None)
        return self.transition(both_above(blendshapes, "eyeBlinkLeft", "eyeBlinkRight", self.threshold))


class BrowFurrowDetector(EdgeTriggeredCounter):
    """Counts brow-furrow onsets (a biometric stress proxy)."""

    def __init__(self, threshold: Optional[float] = None):
        super().__init__("brow_furrow", CountedEdge.RISING)
        self.threshold = float(config.BROW_FURROW_THRESHOLD if threshold is None else threshold)

    def update(self, blendshapes: Optional[Dict[str, float]]) -> bool:
        if blendshapes is None:
            return self.transition(None)
        return self.transition(both_above(blendshapes, "browDownLeft", "browDownRight", self.threshold))


class HandFidgetDetector(EdgeTriggeredCounter):
    """Counts a hand entering the frame after absence. No hands resets the phase."""

    def __init__(self):
        super().__init__("fidget", CountedEdge.RISING)

    def update(self, hand_present: bool) -> bool:
        return self.transition(bool(hand_present))


# ---------------------------------------------------------------------------
# Audio detectors
# ---------------------------------------------------------------------------

class ImpactDetector:
    """
    Debounced acoustic spike ("thump") counter.

    A spike is rms > factor * avg_rms or rms > absolute floor. At most one
    impact is counted per debounce window; each counted impact raises a short
    flash for the dashboard. The phase is ACTIVE while the flash is showing.
    """

    def __init__(
        self,
        relative_factor: Optional[float] = None,
        absolute_floor: Optional[float] = None,
        debounce_ms: Optional[float] = None,
        flash_ms: Optional[float] = None,
    ):
        self.relative_factor = float(config.IMPACT_RELATIVE_FACTOR if relative_factor is None else relative_factor)
        self.absolute_floor = float(config.IMPACT_ABSOLUTE_FLOOR if absolute_floor is None else absolute_floor)
        self.debounce_ms = float(config.IMPACT_DEBOUNCE_MS if debounce_ms is None else debounce_ms)
        self.flash_ms = float(config.IMPACT_FLASH_MS if flash_ms is None else flash_ms)
        self._count = 0
        self.last_fire_ms: Optional[float] = None
        self._flash_until_ms: float = float("-inf")

    @property
    def count(self) -> int:
        return self._count

    def reset(self) -> None:
        self._count = 0
        self.last_fire_ms = None
        self._flash_until_ms = float("-inf")

    def is_spike(self, rms: float, avg_rms: float) -> bool:
        return rms > self.relative_factor * avg_rms or rms > self.absolute_floor

    def is_flashing(self, now_ms: float) -> bool:
        return now_ms < self._flash_until_ms

    def phase(self, now_ms: float) -> DetectorPhase:
        return DetectorPhase.ACTIVE if self.is_flashing(now_ms) else DetectorPhase.IDLE

    def update(self, now_ms: float, rms: float, avg_rms: float) -> bool:
        """Returns True if an impact was counted on this pull."""
        if not self.is_spike(rms, avg_rms):
            return False
        if self.last_fire_ms is not None and now_ms - self.last_fire_ms <= self.debounce_ms:
            return False
        self._count += 1
        self.last_fire_ms = now_ms
        self._flash_until_ms = now_ms + self.flash_ms
        return True


class VoiceActivityDetector:
    """
    Approximate voice-active seconds: when rms exceeds the speaking level,
    add one second at most once per interval. The first interval is measured
    from session start.
    """

    def __init__(self, rms_threshold: Optional[float] = None, interval_ms: Optional[float] = None):
        self.rms_threshold = float(config.VOICE_RMS_THRESHOLD if rms_threshold is None else rms_threshold)
        self.interval_ms = float(config.VOICE_INTERVAL_MS if interval_ms is None else interval_ms)
        self._count = 0
        self.last_counted_ms: float = 0.0

    @property
    def count(self) -> int:
        return self._count

    def reset(self, session_start_ms: float = 0.0) -> None:
        self._count = 0
        self.last_counted_ms = float(session_start_ms)

    def update(self, now_ms: float, rms: float) -> bool:
        if rms <= self.rms_threshold:
            return False
        if now_ms - self.last_counted_ms <= self.interval_ms:
            return False
        self._count += 1
        self.last_counted_ms = now_ms
        return True


class EventDetectors:
    """The six detectors of one session, reset together."""

    def __init__(self):
        self.gaze = GazeDetector()
        self.blink = BlinkDetector()
        self.brow_furrow = BrowFurrowDetector()
        self.fidget = HandFidgetDetector()
        self.impact = ImpactDetector()
        self.voice = VoiceActivityDetector()

    def reset(self) -> None:
        self.gaze.reset()
        self.blink.reset()
        self.brow_furrow.reset()
        self.fidget.reset()
        self.impact.reset()
        self.voice.reset()

    def counters(self) -> EventCounters:
        return EventCounters(
            look_count=self.gaze.count,
            blink_count=self.blink.count,
            fidget_count=self.fidget.count,
            thump_count=self.impact.count,
            brow_furrow_count=self.brow_furrow.count,
            voice_seconds=self.voice.count,
        )

    def hysteresis_flags(self) -> Dict[str, bool]:
        """Current phase of each visual detector, keyed like the dashboard expects."""
        return {
            "isBlinking": self.blink.is_active,
            "isBrowFurrowed": self.brow_furrow.is_active,
            "isHandInFrame": self.fidget.is_active,
            "lastLookingState": self.gaze.is_active,
        }
