"""
Session Aggregator Module

The single authoritative store for one monitoring session:

- the event detectors (each the sole writer of its own counter; read-only here)
- live rolling signals: noise level, brightness, device stress, head tilt, looking
- the gaze-sample ring (last 50 samples, 100 ms apart: a 5-second live window)
- the append-only snapshot history (one snapshot per 2 s of session time)

All times are milliseconds since session start. The detection loop is the only
writer and holds `lock` for the duration of a tick; HTTP handlers and other
display observers read through the same lock or subscribe to tick updates.
"""

import logging
import threading
from collections import deque
from typing import Optional, List, Dict, Any, Callable, Deque

import config
from utils.event_detectors import EventDetectors
from utils.session_models import (
    GazeSample,
    GeoLocation,
    SessionSnapshot,
    SessionStats,
    round_half_up,
)

logger = logging.getLogger(__name__)


class SessionAggregator:
    """
    Owns counters (via the detectors), rolling signals, the gaze ring and the
    snapshot history, and derives statistics from them on demand.

    Usage:
        agg = SessionAggregator()
        agg.start(0.0)
        ...
        stats = agg.calculate_stats(now_ms)
    """

    def __init__(
        self,
        detectors: Optional[EventDetectors] = None,
        gaze_ring_size: Optional[int] = None,
        gaze_sample_interval_ms: Optional[float] = None,
        snapshot_interval_ms: Optional[float] = None,
    ):
        self.detectors = detectors or EventDetectors()
        self.gaze_ring_size = int(gaze_ring_size or config.GAZE_RING_SIZE)
        self.gaze_sample_interval_ms = float(gaze_sample_interval_ms or config.GAZE_SAMPLE_INTERVAL_MS)
        self.snapshot_interval_ms = float(snapshot_interval_ms or config.SNAPSHOT_INTERVAL_MS)
        self.lock = threading.RLock()
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []
        self._subscribers_lock = threading.Lock()
        self.start(0.0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, now_ms: float = 0.0, location: Optional[GeoLocation] = None) -> None:
        """Zero every counter and flag and clear all histories for a new session."""
        with self.lock:
            self.detectors.reset()
            self.detectors.voice.reset(session_start_ms=now_ms)
            self.session_start_ms = float(now_ms)
            self.location = location

            self.noise_level: float = 0.0
            self.brightness: float = 0.0
            self.system_stress: float = 0.0
            self.head_tilt: float = 0.0
            self.is_looking: bool = False

            self._gaze_ring: Deque[GazeSample] = deque(maxlen=self.gaze_ring_size)
            self._snapshots: List[SessionSnapshot] = []
            self.last_gaze_sample_ms = float(now_ms)
            self.last_snapshot_ms = float(now_ms)

    # ------------------------------------------------------------------
    # Derived statistics
    # ------------------------------------------------------------------

    def elapsed_ms(self, now_ms: float) -> float:
        return max(0.0, now_ms - self.session_start_ms)

    def engagement_score(self) -> int:
        """Percentage of samples in the gaze ring marked as looking; 0 when empty."""
        with self.lock:
            total = len(self._gaze_ring)
            if total == 0:
                return 0
            looking = sum(1 for s in self._gaze_ring if s.state == 1)
        return round_half_up(100.0 * looking / total)

    def calculate_stats(self, now_ms: float) -> SessionStats:
        """
        Summary of the session so far. No side effects: calling it twice with
        no tick in between returns equal results.
        """
        with self.lock:
            counters = self.detectors.counters()
            total_time = round_half_up(self.elapsed_ms(now_ms) / 1000.0)
            if total_time > 0:
                avg_focus = round_half_up(total_time / max(counters.look_count, 1))
            else:
                avg_focus = 0
            return SessionStats(
                total_looks=counters.look_count,
                total_time_seconds=total_time,
                average_focus_duration=avg_focus,
                engagement_score=self.engagement_score(),
                total_blinks=counters.blink_count,
                hand_fidget_count=counters.fidget_count,
                avg_noise_level=self.noise_level,
                voice_time_seconds=counters.voice_seconds,
                thump_count=counters.thump_count,
                head_tilt_degrees=self.head_tilt,
                brow_furrow_count=counters.brow_furrow_count,
                avg_brightness=self.brightness,
                system_stress_score=self.system_stress,
                location=self.location,
            )

    # ------------------------------------------------------------------
    # Gaze ring
    # ------------------------------------------------------------------

    def append_gaze_sample(self, now_ms: float) -> GazeSample:
        """Push the current looking flag; the oldest sample is evicted past the ring size."""
        with self.lock:
            sample = GazeSample(time=self.elapsed_ms(now_ms), state=1 if self.is_looking else 0)
            self._gaze_ring.append(sample)
            self.last_gaze_sample_ms = now_ms
            return sample

    def maybe_append_gaze_sample(self, now_ms: float) -> Optional[GazeSample]:
        """Append a sample when a full sampling interval has passed, changed or not."""
        if now_ms - self.last_gaze_sample_ms >= self.gaze_sample_interval_ms:
            return self.append_gaze_sample(now_ms)
        return None

    def gaze_samples(self) -> List[GazeSample]:
        with self.lock:
            return list(self._gaze_ring)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def take_snapshot(self, now_ms: float) -> SessionSnapshot:
        """
        Capture the current state and append it to the history.

        Raises:
            ValueError: if the timestamp does not advance past the last snapshot
        """
        with self.lock:
            ts = self.elapsed_ms(now_ms)
            if self._snapshots and ts <= self._snapshots[-1].timestamp:
                raise ValueError(
                    f"Snapshot timestamp {ts} does not advance past {self._snapshots[-1].timestamp}"
                )
            counters = self.detectors.counters()
            snapshot = SessionSnapshot(
                timestamp=ts,
                is_looking=self.is_looking,
                blink_count=counters.blink_count,
                fidget_count=counters.fidget_count,
                noise_level=self.noise_level,
                brow_furrow_count=counters.brow_furrow_count,
                brightness=self.brightness,
                system_stress=self.system_stress,
                thump_count=counters.thump_count,
                head_tilt=self.head_tilt,
                focus_score=self.engagement_score(),
            )
            self._snapshots.append(snapshot)
            self.last_snapshot_ms = now_ms
            return snapshot

    def maybe_take_snapshot(self, now_ms: float) -> Optional[SessionSnapshot]:
        """
        Take a snapshot once per interval. After a stall the next tick takes a
        single snapshot of current state; missed intervals are not replayed.
        """
        if now_ms - self.last_snapshot_ms >= self.snapshot_interval_ms:
            return self.take_snapshot(now_ms)
        return None

    def history(self) -> List[SessionSnapshot]:
        with self.lock:
            return list(self._snapshots)

    def chart_series(self) -> List[Dict[str, Any]]:
        """
        Snapshot history shaped for the retrospective chart: an elapsed-time
        label and 0/1 markers for events that happened since the previous point.
        """
        series = []
        prev: Optional[SessionSnapshot] = None
        for snap in self.history():
            is_blinking = int(prev is not None and snap.blink_count > prev.blink_count)
            is_fidgeting = int(prev is not None and snap.fidget_count > prev.fidget_count)
            is_impact = int(prev is not None and snap.thump_count > prev.thump_count)
            point = snap.to_dict()
            point.update({
                "timeStr": f"{int(snap.timestamp // 1000)}s",
                "isBlinking": is_blinking,
                "isFidgeting": is_fidgeting,
                "isImpact": is_impact,
                "hasEvent": int(bool(is_blinking or is_fidgeting or is_impact)),
            })
            series.append(point)
            prev = snap
        return series

    # ------------------------------------------------------------------
    # Display observers
    # ------------------------------------------------------------------

    def live_metrics(self, now_ms: float) -> Dict[str, Any]:
        """Everything the live dashboard renders, read in one consistent pass."""
        with self.lock:
            out = self.detectors.counters().to_dict()
            out.update(self.detectors.hysteresis_flags())
            out.update({
                "elapsedMs": self.elapsed_ms(now_ms),
                "isLooking": self.is_looking,
                "engagementScore": self.engagement_score(),
                "noiseLevel": self.noise_level,
                "brightness": self.brightness,
                "deviceStress": self.system_stress,
                "headTilt": self.head_tilt,
                "impactFlash": self.detectors.impact.is_flashing(now_ms),
                "gazeHistory": [s.to_dict() for s in self._gaze_ring],
                "snapshotCount": len(self._snapshots),
            })
            return out

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """
        Register an observer called with live metrics after every tick.

        Returns:
            A function that removes the subscription
        """
        with self._subscribers_lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._subscribers_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, now_ms: float, events: Optional[List[str]] = None) -> None:
        """Push live metrics to subscribers, each with its own copy. A failing observer is logged and skipped."""
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        payload = self.live_metrics(now_ms)
        payload["events"] = list(events or [])
        for callback in subscribers:
            try:
                callback(dict(payload))
            except Exception as e:
                logger.warning("Live metrics subscriber failed: %s", e)

    def export_state(self) -> Dict[str, Any]:
        """Full internal state, for comparing sessions (e.g. after a reset)."""
        with self.lock:
            return {
                "counters": self.detectors.counters().to_dict(),
                "flags": self.detectors.hysteresis_flags(),
                "impactLastFireMs": self.detectors.impact.last_fire_ms,
                "voiceLastCountedMs": self.detectors.voice.last_counted_ms,
                "sessionStartMs": self.session_start_ms,
                "location": self.location.to_dict() if self.location else None,
                "noiseLevel": self.noise_level,
                "brightness": self.brightness,
                "systemStress": self.system_stress,
                "headTilt": self.head_tilt,
                "isLooking": self.is_looking,
                "gazeHistory": [s.to_dict() for s in self._gaze_ring],
                "snapshots": [s.to_dict() for s in self._snapshots],
                "lastGazeSampleMs": self.last_gaze_sample_ms,
                "lastSnapshotMs": self.last_snapshot_ms,
            }
