"""
=============================================================================
CONFIGURATION FOR FOCUSFLOW MONITOR (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
modules read from it; nothing secret is stored in the code. Values come from
the environment (your .env file or system variables), so you can tune the
detectors or point at a different AI deployment without editing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Azure AI Foundry  — The language model that writes the end-of-session report.
  2. Vision models     — MediaPipe face/hand landmarker bundles and confidences.
  3. Media             — Camera resolution, microphone sample rate and buffer size.
  4. Detectors         — Thresholds and debounce windows for the event counters.
  5. Cadences          — How often gaze samples, snapshots and environment checks run.
  6. Server            — Host, port, and debug mode for the web server.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. AZURE_FOUNDRY_KEY) override everything.
  - If an env var is not set, we use the empirically chosen default.
  - We never put real API keys or secrets as defaults in code.
=============================================================================
"""

import os
from typing import Optional


# ============================================================================
# AZURE AI FOUNDRY (writes the retrospective session report)
# ============================================================================
# At session end the aggregated statistics are sent to a chat deployment which
# returns a short verdict, an engagement level and three tips as JSON.
# ----------------------------------------------------------------------------
# Helper: clean up endpoint and names so we don't get 404s from stray spaces
# or a trailing slash.
# ----------------------------------------------------------------------------
def _sanitize_azure_foundry_config() -> None:
    global AZURE_FOUNDRY_KEY, AZURE_FOUNDRY_ENDPOINT, FOUNDRY_DEPLOYMENT_NAME, AZURE_FOUNDRY_API_VERSION
    AZURE_FOUNDRY_KEY = (AZURE_FOUNDRY_KEY or "").strip()
    FOUNDRY_DEPLOYMENT_NAME = (FOUNDRY_DEPLOYMENT_NAME or "gpt-4o").strip()
    AZURE_FOUNDRY_API_VERSION = (AZURE_FOUNDRY_API_VERSION or "2024-11-20").strip()
    ep = (AZURE_FOUNDRY_ENDPOINT or "").strip().rstrip("/")
    AZURE_FOUNDRY_ENDPOINT = ep if ep else ""


# No default secrets; set AZURE_FOUNDRY_KEY and AZURE_FOUNDRY_ENDPOINT in env.
AZURE_FOUNDRY_KEY: str = (os.getenv("AZURE_FOUNDRY_KEY") or "").strip()
AZURE_FOUNDRY_ENDPOINT: str = (os.getenv("AZURE_FOUNDRY_ENDPOINT") or "").strip().rstrip("/")
FOUNDRY_DEPLOYMENT_NAME: str = os.getenv("FOUNDRY_DEPLOYMENT_NAME", "gpt-4o")
AZURE_FOUNDRY_API_VERSION: str = os.getenv("AZURE_FOUNDRY_API_VERSION", "2024-11-20")
_sanitize_azure_foundry_config()

# Report generation: short JSON answer, low temperature for a stable verdict.
ANALYSIS_MAX_TOKENS: int = int(os.getenv("ANALYSIS_MAX_TOKENS", "400"))
ANALYSIS_TEMPERATURE: float = float(os.getenv("ANALYSIS_TEMPERATURE", "0.4"))

# ============================================================================
# VISION MODELS (MediaPipe Tasks landmarkers)
# ============================================================================
# Bundles are downloaded once into MODEL_DIR on first session start.
# ----------------------------------------------------------------------------
FACE_LANDMARKER_MODEL_URL: str = os.getenv(
    "FACE_LANDMARKER_MODEL_URL",
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task",
)
HAND_LANDMARKER_MODEL_URL: str = os.getenv(
    "HAND_LANDMARKER_MODEL_URL",
    "https://storage.googleapis.com/mediapipe-models/hand_landmarker/hand_landmarker/float16/1/hand_landmarker.task",
)
MODEL_DIR: str = os.getenv("MODEL_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "models"))
MODEL_DOWNLOAD_TIMEOUT_SEC: float = float(os.getenv("MODEL_DOWNLOAD_TIMEOUT_SEC", "120"))
MAX_NUM_HANDS: int = int(os.getenv("MAX_NUM_HANDS", "2"))
# Minimum confidence for face/hand detection (0.01-0.99).
MIN_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_DETECTION_CONFIDENCE", "0.5"))

# ============================================================================
# MEDIA (camera and microphone)
# ============================================================================
CAMERA_WIDTH: int = int(os.getenv("CAMERA_WIDTH", "1280"))
CAMERA_HEIGHT: int = int(os.getenv("CAMERA_HEIGHT", "720"))
# Browser-pushed frames wider than this are downscaled on arrival.
BROWSER_FRAME_MAX_WIDTH: int = int(os.getenv("BROWSER_FRAME_MAX_WIDTH", "1280"))
AUDIO_SAMPLE_RATE: int = int(os.getenv("AUDIO_SAMPLE_RATE", "44100"))
# One "pull" of time-domain samples per tick.
AUDIO_BUFFER_SIZE: int = int(os.getenv("AUDIO_BUFFER_SIZE", "2048"))

# ============================================================================
# DETECTORS (edge-triggered counters)
# ============================================================================
# These were chosen empirically; treat them as tunable, not as fixed law.
# ----------------------------------------------------------------------------
# Looking at screen: nose x position between the eye corners, as a ratio.
GAZE_RATIO_MIN: float = float(os.getenv("GAZE_RATIO_MIN", "0.35"))
GAZE_RATIO_MAX: float = float(os.getenv("GAZE_RATIO_MAX", "0.65"))
# Both eyeBlink blendshapes above this = eyes closed.
BLINK_THRESHOLD: float = float(os.getenv("BLINK_THRESHOLD", "0.5"))
# Both browDown blendshapes above this = furrowed.
BROW_FURROW_THRESHOLD: float = float(os.getenv("BROW_FURROW_THRESHOLD", "0.4"))
# Impact (thump): rms above FACTOR x moving average, or above the absolute floor.
IMPACT_RELATIVE_FACTOR: float = float(os.getenv("IMPACT_RELATIVE_FACTOR", "4.0"))
IMPACT_ABSOLUTE_FLOOR: float = float(os.getenv("IMPACT_ABSOLUTE_FLOOR", "0.08"))
IMPACT_DEBOUNCE_MS: float = float(os.getenv("IMPACT_DEBOUNCE_MS", "500"))
IMPACT_FLASH_MS: float = float(os.getenv("IMPACT_FLASH_MS", "200"))
# Voice activity: one voice second per qualifying interval.
VOICE_RMS_THRESHOLD: float = float(os.getenv("VOICE_RMS_THRESHOLD", "0.03"))
VOICE_INTERVAL_MS: float = float(os.getenv("VOICE_INTERVAL_MS", "1000"))
# Seed of the slow RMS moving average.
AVG_RMS_SEED: float = float(os.getenv("AVG_RMS_SEED", "0.01"))

# ============================================================================
# CADENCES (session-time intervals)
# ============================================================================
GAZE_SAMPLE_INTERVAL_MS: float = float(os.getenv("GAZE_SAMPLE_INTERVAL_MS", "100"))
# 50 samples at 100 ms = 5-second live window.
GAZE_RING_SIZE: int = int(os.getenv("GAZE_RING_SIZE", "50"))
SNAPSHOT_INTERVAL_MS: float = float(os.getenv("SNAPSHOT_INTERVAL_MS", "2000"))
BRIGHTNESS_SAMPLE_INTERVAL_MS: float = float(os.getenv("BRIGHTNESS_SAMPLE_INTERVAL_MS", "1000"))
BRIGHTNESS_SAMPLE_WIDTH: int = int(os.getenv("BRIGHTNESS_SAMPLE_WIDTH", "64"))
BRIGHTNESS_SAMPLE_HEIGHT: int = int(os.getenv("BRIGHTNESS_SAMPLE_HEIGHT", "48"))
STRESS_WINDOW_MS: float = float(os.getenv("STRESS_WINDOW_MS", "1000"))
# Frame rate considered "no load" for the device-stress proxy.
STRESS_REFERENCE_FPS: float = float(os.getenv("STRESS_REFERENCE_FPS", "60"))
# Detection loop pacing; ticks never overlap, a slow tick just delays the next.
TARGET_FPS: float = float(os.getenv("TARGET_FPS", "30"))
# How long stop waits for an in-flight tick before releasing media.
STOP_JOIN_TIMEOUT_SEC: float = float(os.getenv("STOP_JOIN_TIMEOUT_SEC", "2.0"))

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = os.getenv("FLASK_DEBUG", "true").lower() == "true"
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")
# Seconds between Server-Sent Events on GET /session/live-stream.
LIVE_STREAM_INTERVAL_SEC: float = float(os.getenv("LIVE_STREAM_INTERVAL_SEC", "0.25"))


# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Log warnings when required configuration is missing (no secrets in code; set env vars).
    Call from app startup (e.g. app.py) to help operators. Does not raise.
    """
    import sys
    missing = []
    if not AZURE_FOUNDRY_KEY:
        missing.append("AZURE_FOUNDRY_KEY")
    if not AZURE_FOUNDRY_ENDPOINT:
        missing.append("AZURE_FOUNDRY_ENDPOINT")
    if missing:
        print(
            "Config warning: the following env vars are not set. Session reports will use the fallback analysis:",
            ", ".join(missing),
            file=sys.stderr,
        )
    if GAZE_RATIO_MIN >= GAZE_RATIO_MAX:
        print("Config warning: GAZE_RATIO_MIN must be below GAZE_RATIO_MAX", file=sys.stderr)


def is_foundry_configured() -> bool:
    """Return True when both the Foundry key and endpoint are set."""
    return bool(AZURE_FOUNDRY_KEY and AZURE_FOUNDRY_ENDPOINT)


def get_detector_thresholds() -> dict:
    """
    Get the detector thresholds and debounce windows currently in effect.

    Returns:
        dict: camelCase keys, suitable for the dashboard and for logging
    """
    return {
        "gazeRatioMin": GAZE_RATIO_MIN,
        "gazeRatioMax": GAZE_RATIO_MAX,
        "blinkThreshold": BLINK_THRESHOLD,
        "browFurrowThreshold": BROW_FURROW_THRESHOLD,
        "impactRelativeFactor": IMPACT_RELATIVE_FACTOR,
        "impactAbsoluteFloor": IMPACT_ABSOLUTE_FLOOR,
        "impactDebounceMs": IMPACT_DEBOUNCE_MS,
        "impactFlashMs": IMPACT_FLASH_MS,
        "voiceRmsThreshold": VOICE_RMS_THRESHOLD,
        "voiceIntervalMs": VOICE_INTERVAL_MS,
    }


def build_config_response(model_status: Optional[dict] = None) -> dict:
    """
    Build the complete configuration response for GET /config/all.
    Aggregates all non-secret settings into a single dictionary.
    """
    return {
        "foundry": {
            "enabled": is_foundry_configured(),
            "deploymentName": FOUNDRY_DEPLOYMENT_NAME,
        },
        "media": {
            "audioSampleRate": AUDIO_SAMPLE_RATE,
            "audioBufferSize": AUDIO_BUFFER_SIZE,
            "cameraWidth": CAMERA_WIDTH,
            "cameraHeight": CAMERA_HEIGHT,
        },
        "detectors": get_detector_thresholds(),
        "cadences": {
            "gazeSampleIntervalMs": GAZE_SAMPLE_INTERVAL_MS,
            "gazeRingSize": GAZE_RING_SIZE,
            "snapshotIntervalMs": SNAPSHOT_INTERVAL_MS,
            "brightnessSampleIntervalMs": BRIGHTNESS_SAMPLE_INTERVAL_MS,
            "stressWindowMs": STRESS_WINDOW_MS,
            "targetFps": TARGET_FPS,
        },
        "models": model_status or {},
    }
