"""
Signal Fusion Engine

One detection-loop tick: (current state, new samples) -> (new state, events).

Order within a tick:
  1. audio envelope       -> impact and voice detectors
  2. frame-rate window    -> device stress
  3. brightness           -> at most once per second
  4. primary face         -> gaze/look, head tilt, blink, brow furrow
  5. gaze sample          -> every 100 ms of session time
  6. hands                -> fidget
  7. snapshot             -> every 2 s of session time

The engine does no I/O and reads no clock: the caller passes `now_ms` and the
detector output, so a scripted sequence of inputs always yields the same counts.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Sequence

import numpy as np

from utils.audio_envelope import AudioEnvelopeAnalyzer, AudioEnvelope
from utils.environment_sampler import BrightnessSampler, SystemStressMonitor, HostTelemetry
from utils.event_detectors import head_tilt_degrees
from utils.landmark_detector_interface import LandmarkDetectionResult
from utils.session_aggregator import SessionAggregator
from utils.session_models import GazeSample, GeoLocation, SessionSnapshot

EVENT_LOOK = "look"
EVENT_BLINK = "blink"
EVENT_BROW_FURROW = "brow_furrow"
EVENT_FIDGET = "fidget"
EVENT_IMPACT = "impact"
EVENT_VOICE_SECOND = "voice_second"
EVENT_SNAPSHOT = "snapshot"


@dataclass
class TickResult:
    """What one tick changed."""
    now_ms: float
    events: List[str] = field(default_factory=list)
    envelope: Optional[AudioEnvelope] = None
    gaze_sample: Optional[GazeSample] = None
    snapshot: Optional[SessionSnapshot] = None


class SignalFusionEngine:
    """
    Feeds detector output and audio into the event detectors and the
    aggregator. Holds the aggregator lock for the whole tick, so readers
    never observe a half-applied tick.
    """

    def __init__(
        self,
        aggregator: Optional[SessionAggregator] = None,
        envelope_analyzer: Optional[AudioEnvelopeAnalyzer] = None,
        brightness_sampler: Optional[BrightnessSampler] = None,
        stress_monitor: Optional[SystemStressMonitor] = None,
        telemetry: Optional[HostTelemetry] = None,
    ):
        self.aggregator = aggregator or SessionAggregator()
        self.envelope_analyzer = envelope_analyzer or AudioEnvelopeAnalyzer()
        self.brightness_sampler = brightness_sampler or BrightnessSampler()
        self.stress_monitor = stress_monitor or SystemStressMonitor(telemetry=telemetry)

    @property
    def detectors(self):
        return self.aggregator.detectors

    def start(self, now_ms: float = 0.0, location: Optional[GeoLocation] = None) -> None:
        """Reset every component for a new session."""
        with self.aggregator.lock:
            self.aggregator.start(now_ms, location)
            self.envelope_analyzer.reset()
            self.brightness_sampler.reset()
            self.stress_monitor.reset(now_ms)

    def tick(
        self,
        now_ms: float,
        detection: Optional[LandmarkDetectionResult] = None,
        audio_samples: Optional[Sequence[float]] = None,
        frame: Optional[np.ndarray] = None,
    ) -> TickResult:
        """
        Apply one tick.

        Args:
            now_ms: Session time of this tick (ms, non-decreasing)
            detection: Landmarks for this tick's frame; None when no frame was read
            audio_samples: One audio pull; None when no audio source is attached
            frame: The BGR frame, used for brightness sampling

        Returns:
            TickResult with the events counted on this tick
        """
        agg = self.aggregator
        det = agg.detectors
        result = TickResult(now_ms=now_ms)
        events = result.events

        with agg.lock:
            if audio_samples is not None:
                env = self.envelope_analyzer.analyze(audio_samples)
                result.envelope = env
                agg.noise_level = env.noise_level
                if det.impact.update(now_ms, env.rms, env.avg_rms):
                    events.append(EVENT_IMPACT)
                if det.voice.update(now_ms, env.rms):
                    events.append(EVENT_VOICE_SECOND)

            stress = self.stress_monitor.record_frame(now_ms)
            if stress is not None:
                agg.system_stress = stress

            brightness = self.brightness_sampler.maybe_sample(now_ms, frame)
            if brightness is not None:
                agg.brightness = brightness

            face = detection.primary_face if detection is not None else None
            looking = False
            if face is not None:
                if det.gaze.update(face.landmarks):
                    events.append(EVENT_LOOK)
                looking = det.gaze.is_active
                tilt = head_tilt_degrees(face.landmarks)
                if tilt is not None:
                    agg.head_tilt = tilt
                if face.blendshapes is not None:
                    if det.blink.update(face.blendshapes):
                        events.append(EVENT_BLINK)
                    if det.brow_furrow.update(face.blendshapes):
                        events.append(EVENT_BROW_FURROW)
            agg.is_looking = looking

            result.gaze_sample = agg.maybe_append_gaze_sample(now_ms)

            hands_in_view = detection.has_hands if detection is not None else False
            if det.fidget.update(hands_in_view):
                events.append(EVENT_FIDGET)

            result.snapshot = agg.maybe_take_snapshot(now_ms)
            if result.snapshot is not None:
                events.append(EVENT_SNAPSHOT)

        agg.notify(now_ms, events)
        return result
