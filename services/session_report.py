"""
Session Report Service

Builds the end-of-session report: the aggregated SessionStats are turned into a
prompt, sent to Azure AI Foundry, and the JSON answer is parsed into an
AIAnalysis (summary, engagement level, three tips).

The request is fire-and-forget: SessionReportRequester runs it on a background
thread, guarded by a single "is analyzing" flag so a double-clicked retry cannot
submit twice. On any failure the fixed fallback analysis is stored and a
dismissable banner message is raised; the report never hangs and never shows
a raw error.
"""

import json
import logging
import re
import threading
from typing import Optional, Callable, Dict, Any

import config
from services.azure_foundry import get_foundry_service
from utils.session_models import AIAnalysis, SessionStats, ENGAGEMENT_LEVELS, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Unable to synthesize behavioral data."
DEFAULT_TIPS = ("Take a short break.", "Check your lighting.", "Reduce background noise.")
DEFAULT_ENGAGEMENT_LEVEL = "Medium"

FALLBACK_ANALYSIS = AIAnalysis(
    summary="Diagnostic engine encountered a network or processing error.",
    tips=["Try restarting the session.", "Ensure your API key is active.", "Check your internet connection."],
    engagement_level="Medium",
    is_fallback=True,
)

ANALYSIS_FAILED_MESSAGE = "Diagnostic synthesis failed. Please retry."

SYSTEM_PROMPT = (
    "You are a focus and ergonomics coach reviewing the sensor log of one work session. "
    "You receive counts and averages from a webcam and microphone monitor; you never see video or hear audio. "
    "System stress describes the user's computer (frame drops, memory pressure), not the user. "
    "Answer with a single JSON object and nothing else."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_analysis_prompt(stats: SessionStats) -> str:
    """Render the session statistics as the user message for the report request."""
    lines = [
        "Analyze these biometric and environmental session stats from a user's focus tracking app:",
        f"- Total Time: {stats.total_time_seconds} seconds",
        f"- Engagement Score: {stats.engagement_score}%",
        f"- Gaze Events (Attendance): {stats.total_looks}",
        f"- Total Blinks: {stats.total_blinks}",
        f"- Hand Fidgeting: {stats.hand_fidget_count}",
        f"- Avg Noise Level: {round_half_up(stats.avg_noise_level)}%",
        f"- Voice Activity: {stats.voice_time_seconds}s",
        f"- Physical Impacts/Thumps: {stats.thump_count}",
        f"- Head Tilt: {round_half_up(stats.head_tilt_degrees)}°",
        f"- Brow Furrows (Stress): {stats.brow_furrow_count}",
        f"- Ambient Brightness: {round_half_up(stats.avg_brightness)}",
        f"- System Stress (Hardware lag): {round_half_up(stats.system_stress_score)}%",
        "",
        "Provide a concise behavioral verdict. Categorize engagement level as 'High', 'Medium', or 'Low'.",
        "Give 3 actionable tactical tips to improve focus or comfort.",
        'Respond as JSON: {"summary": string, "tips": [string, string, string], '
        '"engagementLevel": "High" | "Medium" | "Low"}',
    ]
    return "\n".join(lines)


def parse_analysis_response(text: str) -> AIAnalysis:
    """
    Parse the model's JSON answer. Missing or malformed fields fall back to
    defaults individually.

    Raises:
        ValueError: if the text is not a JSON object at all
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    if not cleaned:
        cleaned = "{}"
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError("Analysis response is not a JSON object")

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = DEFAULT_SUMMARY

    tips = data.get("tips")
    if isinstance(tips, list):
        tips = [t.strip() for t in tips if isinstance(t, str) and t.strip()]
    if not tips:
        tips = list(DEFAULT_TIPS)

    level = data.get("engagementLevel")
    if isinstance(level, str):
        level = level.strip().capitalize()
    if level not in ENGAGEMENT_LEVELS:
        level = DEFAULT_ENGAGEMENT_LEVEL

    weather = data.get("localWeather")
    if not isinstance(weather, str) or not weather.strip():
        weather = None

    return AIAnalysis(summary=summary.strip(), tips=tips, engagement_level=level, local_weather=weather)


def analyze_session(stats: SessionStats) -> AIAnalysis:
    """
    Request a report for the given statistics.

    Raises:
        RuntimeError: if Azure AI Foundry is not configured
        Exception: on network/service failure or an unparseable answer
    """
    if not config.is_foundry_configured():
        raise RuntimeError("Azure AI Foundry is not configured (AZURE_FOUNDRY_KEY / AZURE_FOUNDRY_ENDPOINT)")
    out = get_foundry_service().chat_completion(
        messages=[{"role": "user", "content": build_analysis_prompt(stats)}],
        system_prompt=SYSTEM_PROMPT,
        max_tokens=config.ANALYSIS_MAX_TOKENS,
        temperature=config.ANALYSIS_TEMPERATURE,
        json_response=True,
    )
    return parse_analysis_response(out)


class SessionReportRequester:
    """
    Runs at most one report request at a time on a background thread.

    Usage:
        requester = SessionReportRequester()
        requester.request(stats)      # returns immediately
        ...
        if requester.report_ready:
            show(requester.analysis)
    """

    def __init__(self, analyze_fn: Optional[Callable[[SessionStats], AIAnalysis]] = None):
        self._analyze_fn = analyze_fn or analyze_session
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._done.set()
        self._generation = 0
        self.request_thread: Optional[threading.Thread] = None
        self.is_analyzing = False
        self.report_ready = False
        self.analysis: Optional[AIAnalysis] = None
        self.error_message: Optional[str] = None

    def request(self, stats: SessionStats) -> bool:
        """
        Start a report request in the background.

        Returns:
            False if a request is already outstanding (nothing submitted)
        """
        with self._lock:
            if self.is_analyzing:
                return False
            self.is_analyzing = True
            self.report_ready = False
            self.analysis = None
            self.error_message = None
            self._done.clear()
            generation = self._generation
        self.request_thread = threading.Thread(
            target=self._run, args=(stats, generation), name="session-report", daemon=True
        )
        self.request_thread.start()
        return True

    def _run(self, stats: SessionStats, generation: int) -> None:
        error: Optional[str] = None
        try:
            analysis = self._analyze_fn(stats)
        except Exception as e:
            logger.warning("Session analysis failed: %s", e)
            analysis = FALLBACK_ANALYSIS
            error = ANALYSIS_FAILED_MESSAGE
        with self._lock:
            # A reset while this request was in flight means a new session took over.
            if generation == self._generation:
                self.analysis = analysis
                self.error_message = error
                self.report_ready = True
                self.is_analyzing = False
                self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the outstanding request (if any) finishes. True if finished."""
        return self._done.wait(timeout)

    def dismiss_error(self) -> None:
        with self._lock:
            self.error_message = None

    def reset(self) -> None:
        """Forget the previous session's report; an in-flight result will be discarded."""
        with self._lock:
            self._generation += 1
            self.is_analyzing = False
            self.report_ready = False
            self.analysis = None
            self.error_message = None
            self._done.set()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "isAnalyzing": self.is_analyzing,
                "reportReady": self.report_ready,
                "analysis": self.analysis.to_dict() if self.analysis else None,
                "errorMessage": self.error_message,
            }
