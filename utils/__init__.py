"""
Utilities package for FocusFlow Monitor.

This package contains the signal processing core (audio envelope, event
detectors, environment sampling, session aggregation, signal fusion), the
landmark detector interface, and the video/audio source handlers.

The MediaPipe backend (utils.mediapipe_landmarker) is not imported here; it is
loaded on first session start.
"""

from .session_models import (
    TrackingState,
    GeoLocation,
    GazeSample,
    EventCounters,
    SessionSnapshot,
    SessionStats,
    AIAnalysis,
)
from .audio_envelope import AudioEnvelopeAnalyzer, AudioEnvelope
from .event_detectors import EventDetectors, EdgeTriggeredCounter, DetectorPhase
from .environment_sampler import BrightnessSampler, SystemStressMonitor, estimate_brightness
from .landmark_detector_interface import LandmarkDetectorInterface, LandmarkDetectionResult
from .session_aggregator import SessionAggregator
from .signal_fusion import SignalFusionEngine, TickResult
from .video_source_handler import VideoSourceHandler, VideoSourceType
from .audio_source_handler import AudioSourceHandler, AudioSourceType

__all__ = [
    'TrackingState',
    'GeoLocation',
    'GazeSample',
    'EventCounters',
    'SessionSnapshot',
    'SessionStats',
    'AIAnalysis',
    'AudioEnvelopeAnalyzer',
    'AudioEnvelope',
    'EventDetectors',
    'EdgeTriggeredCounter',
    'DetectorPhase',
    'BrightnessSampler',
    'SystemStressMonitor',
    'estimate_brightness',
    'LandmarkDetectorInterface',
    'LandmarkDetectionResult',
    'SessionAggregator',
    'SignalFusionEngine',
    'TickResult',
    'VideoSourceHandler',
    'VideoSourceType',
    'AudioSourceHandler',
    'AudioSourceType',
]
