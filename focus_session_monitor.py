"""
Focus Session Monitor.

Orchestrates one real-time monitoring session: loads the landmark models,
acquires camera and microphone, runs the detection loop on a background thread
and, when the session stops, hands the final statistics to the report requester.

Pipeline per tick: read newest frame → read newest audio buffer → landmark
detection → signal fusion (detectors, environment sampling, aggregation).

Scheduling: ticks are serialized on one thread. A slow inference call delays
the next tick instead of overlapping it, and the latest-frame sources drop the
frames that arrived in between. A tick that raises is logged and skipped; the
loop keeps running until stop_session() sets that session's stop event.
"""

import logging
import threading
import time
from typing import Optional, Callable, Dict, Any

import config
from services.session_report import SessionReportRequester
from utils.audio_source_handler import AudioSourceHandler, AudioSourceType
from utils.environment_sampler import HostTelemetry, PsutilHostTelemetry
from utils.landmark_detector_interface import LandmarkDetectorInterface
from utils.session_models import TrackingState, GeoLocation, SessionStats
from utils.signal_fusion import SignalFusionEngine, TickResult
from utils.video_source_handler import VideoSourceHandler, VideoSourceType

logger = logging.getLogger(__name__)

MODEL_LOAD_FAILED_MESSAGE = "Could not load AI models."
MEDIA_ACCESS_FAILED_MESSAGE = "Media access required."


def _default_detector_factory() -> LandmarkDetectorInterface:
    # Lazy import: mediapipe is heavy and only needed once a session starts.
    from utils.mediapipe_landmarker import MediaPipeLandmarkDetector
    return MediaPipeLandmarkDetector()


class FocusSessionMonitor:
    """
    Main session orchestrator.

    Usage:
        monitor = FocusSessionMonitor()
        if monitor.start_session(VideoSourceType.WEBCAM, audio_source_type=AudioSourceType.MICROPHONE):
            ...
            state = monitor.get_live_state()
        stats = monitor.stop_session()   # report is requested in the background
    """

    def __init__(
        self,
        detector_factory: Optional[Callable[[], LandmarkDetectorInterface]] = None,
        clock: Optional[Callable[[], float]] = None,
        video_handler: Optional[VideoSourceHandler] = None,
        audio_handler: Optional[AudioSourceHandler] = None,
        report_requester: Optional[SessionReportRequester] = None,
        telemetry: Optional[HostTelemetry] = None,
        target_fps: Optional[float] = None,
    ):
        """
        Initialize the monitor.

        Args:
            detector_factory: Builds the landmark detector (default: MediaPipe Tasks)
            clock: Monotonic clock in seconds (default: time.monotonic)
            video_handler: Frame source (default: VideoSourceHandler)
            audio_handler: Audio source (default: AudioSourceHandler)
            report_requester: End-of-session report runner
            telemetry: Host memory telemetry for the device-stress proxy (default: psutil)
            target_fps: Detection loop pacing (default: config.TARGET_FPS)
        """
        self._detector_factory = detector_factory or _default_detector_factory
        self._clock = clock or time.monotonic
        self.video_handler = video_handler or VideoSourceHandler()
        self.audio_handler = audio_handler or AudioSourceHandler()
        self.reports = report_requester or SessionReportRequester()
        self.engine = SignalFusionEngine(telemetry=telemetry if telemetry is not None else PsutilHostTelemetry())
        self.target_fps = max(1.0, float(target_fps or config.TARGET_FPS))

        self.landmark_detector: Optional[LandmarkDetectorInterface] = None
        self.tracking_state = TrackingState.IDLE
        self.error_message: Optional[str] = None

        # Threading and control
        self.detection_thread: Optional[threading.Thread] = None
        self.is_running = False
        # One event per session; a stopped session's thread never sees it cleared.
        self._stop_event = threading.Event()
        self.stop_join_timeout = config.STOP_JOIN_TIMEOUT_SEC
        self.lock = threading.Lock()
        # Held for the whole read-detect-fuse tick and while a new session resets state.
        self._tick_lock = threading.Lock()

        # Session timing (clock seconds at start; session time is ms since then)
        self._session_origin: Optional[float] = None
        self._ended_at_ms: Optional[float] = None
        self.tick_count = 0
        self.tick_failures = 0
        self.video_source_type: Optional[VideoSourceType] = None
        self.audio_source_type: Optional[AudioSourceType] = None

    @property
    def aggregator(self):
        return self.engine.aggregator

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: TrackingState, error_message: Optional[str] = None) -> None:
        with self.lock:
            self.tracking_state = state
            if error_message is not None:
                self.error_message = error_message

    def now_ms(self) -> float:
        """Session time in ms; frozen at the stop time once a session has ended."""
        if self._session_origin is None:
            return 0.0
        if not self.is_running and self._ended_at_ms is not None:
            return self._ended_at_ms
        return (self._clock() - self._session_origin) * 1000.0

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def load_models(self) -> bool:
        """
        Load the landmark detector once (LOADING → IDLE, or ERROR on failure).

        Returns:
            True if the detector is ready
        """
        if self.landmark_detector is not None and self.landmark_detector.is_available():
            return True
        self._set_state(TrackingState.LOADING)
        try:
            detector = self._detector_factory()
            if not detector.is_available():
                raise RuntimeError(f"Landmark detector '{detector.get_name()}' is not available")
        except Exception as e:
            logger.warning("Landmark model load failed: %s", e)
            self._set_state(TrackingState.ERROR, MODEL_LOAD_FAILED_MESSAGE)
            return False
        self.landmark_detector = detector
        logger.info("Landmark detector loaded: %s", detector.get_name())
        self._set_state(TrackingState.IDLE)
        return True

    def start_session(
        self,
        video_source_type: VideoSourceType = VideoSourceType.WEBCAM,
        video_path: Optional[str] = None,
        audio_source_type: AudioSourceType = AudioSourceType.MICROPHONE,
        location: Optional[GeoLocation] = None,
    ) -> bool:
        """
        Acquire models and media, reset all session state and start the loop.

        Either every resource is acquired and the session starts, or nothing
        runs: partially opened sources are released and the monitor enters
        ERROR with a user-facing message.

        Returns:
            bool: True if the session started
        """
        if self.is_running:
            self.stop_session(request_report=False)

        if not self.load_models():
            return False

        if not self.video_handler.initialize_source(video_source_type, video_path):
            logger.warning("Failed to initialize video source %s (%s)", video_source_type, video_path)
            self._set_state(TrackingState.ERROR, MEDIA_ACCESS_FAILED_MESSAGE)
            return False
        if not self.audio_handler.initialize_source(audio_source_type):
            logger.warning("Failed to initialize audio source %s", audio_source_type)
            self.video_handler.release()
            self._set_state(TrackingState.ERROR, MEDIA_ACCESS_FAILED_MESSAGE)
            return False

        self.video_source_type = video_source_type
        self.audio_source_type = audio_source_type
        self.reports.reset()

        # Waits out a previous session's in-flight tick; that tick sees its own
        # stop event and discards its result.
        stop_event = threading.Event()
        with self._tick_lock:
            self.tick_count = 0
            self.tick_failures = 0
            self._ended_at_ms = None
            self._session_origin = self._clock()
            self.landmark_detector.reset()
            self.engine.start(0.0, location)
            self._stop_event = stop_event
            self.is_running = True
        with self.lock:
            self.error_message = None

        self._set_state(TrackingState.ACTIVE)
        self.detection_thread = threading.Thread(
            target=self._detection_loop, args=(stop_event,), name="focus-detection", daemon=True
        )
        self.detection_thread.start()
        logger.info(
            "Focus session started: video=%s audio=%s detector=%s",
            video_source_type.value, audio_source_type.value, self.landmark_detector.get_name(),
        )
        return True

    # ------------------------------------------------------------------
    # Detection loop
    # ------------------------------------------------------------------

    def run_tick(self, stop_event: Optional[threading.Event] = None) -> Optional[TickResult]:
        """
        Run one tick. Returns None when no frame was available, the session
        stopped during inference, or the tick failed; failures are logged and
        never propagate.

        Args:
            stop_event: The owning session's stop event (default: the current session's)
        """
        stop_event = stop_event or self._stop_event
        with self._tick_lock:
            if stop_event.is_set():
                return None
            now = self.now_ms()
            try:
                ok, frame = self.video_handler.read_frame()
                if not ok or frame is None:
                    return None
                detection = self.landmark_detector.detect(frame, int(now))
                if stop_event.is_set():
                    logger.debug("Discarding detection from a stopped session at %.0f ms", now)
                    return None
                samples = self.audio_handler.read_buffer()
                result = self.engine.tick(now, detection, samples, frame)
                self.tick_count += 1
                return result
            except Exception as e:
                self.tick_failures += 1
                logger.warning("Detection tick failed at %.0f ms: %s", now, e)
                return None

    def _detection_loop(self, stop_event: threading.Event) -> None:
        """Self-paced loop; runs until this session's stop event is set."""
        interval = 1.0 / self.target_fps
        while not stop_event.is_set():
            started = time.monotonic()
            self.run_tick(stop_event)
            remaining = interval - (time.monotonic() - started)
            if stop_event.wait(max(0.0, remaining)):
                break

    # ------------------------------------------------------------------
    # Teardown and report
    # ------------------------------------------------------------------

    def stop_session(self, request_report: bool = True) -> Optional[SessionStats]:
        """
        Stop the loop, release camera and microphone, and (by default) start
        the report request without waiting for it.

        Returns:
            Final SessionStats, or None if no session was running
        """
        if not self.is_running:
            return None
        self._ended_at_ms = self.now_ms()
        self._stop_event.set()
        self.is_running = False
        if (
            self.detection_thread
            and self.detection_thread.is_alive()
            and self.detection_thread is not threading.current_thread()
        ):
            self.detection_thread.join(timeout=self.stop_join_timeout)
            if self.detection_thread.is_alive():
                logger.warning("Detection thread still in a tick after %.1fs; its result will be discarded",
                               self.stop_join_timeout)
        self.video_handler.release()
        self.audio_handler.release()
        self._set_state(TrackingState.IDLE)

        stats = self.aggregator.calculate_stats(self._ended_at_ms)
        logger.info(
            "Focus session stopped after %ss: %d ticks, %d failed",
            stats.total_time_seconds, self.tick_count, self.tick_failures,
        )
        if request_report:
            self.reports.request(stats)
        return stats

    def has_session(self) -> bool:
        """True once any session has started (running or finished)."""
        return self._session_origin is not None

    def has_finished_session(self) -> bool:
        return self._session_origin is not None and not self.is_running

    def request_analysis(self) -> bool:
        """
        Retry the report for the last finished session.

        Returns:
            False if no session has finished or a request is already running
        """
        if not self.has_finished_session():
            return False
        return self.reports.request(self.aggregator.calculate_stats(self.now_ms()))

    def dismiss_error(self) -> None:
        """Clear the banner; an ERROR state returns to IDLE so the user can retry."""
        with self.lock:
            self.error_message = None
            if self.tracking_state == TrackingState.ERROR:
                self.tracking_state = TrackingState.IDLE
        self.reports.dismiss_error()

    def close(self) -> None:
        """Stop any session and release the landmark models."""
        self.stop_session(request_report=False)
        if self.landmark_detector is not None:
            self.landmark_detector.close()
            self.landmark_detector = None

    # ------------------------------------------------------------------
    # Read side (HTTP handlers, live stream)
    # ------------------------------------------------------------------

    def get_stats(self) -> SessionStats:
        return self.aggregator.calculate_stats(self.now_ms())

    def get_history(self) -> Dict[str, Any]:
        return {
            "snapshots": [s.to_dict() for s in self.aggregator.history()],
            "chartSeries": self.aggregator.chart_series(),
        }

    def get_error_message(self) -> Optional[str]:
        with self.lock:
            own = self.error_message
        return own or self.reports.status()["errorMessage"]

    def get_live_state(self) -> Dict[str, Any]:
        """Tracking state, banner and live metrics in one payload."""
        with self.lock:
            state = self.tracking_state
        return {
            "trackingState": state.value,
            "isRunning": self.is_running,
            "errorMessage": self.get_error_message(),
            "videoSource": self.video_source_type.value if self.video_source_type else None,
            "audioSource": self.audio_source_type.value if self.audio_source_type else None,
            "metrics": self.aggregator.live_metrics(self.now_ms()),
            "report": self.reports.status(),
        }
