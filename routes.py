"""
Flask routes for FocusFlow Monitor.

Handles static files, config, and the focus session lifecycle: start/stop,
live state (polling and Server-Sent Events), final stats, snapshot history,
the retrospective report (with retry), and browser-fed frames and audio.
"""

import json
import math
import queue
from typing import Optional

from flask import Blueprint, request, jsonify, send_from_directory, Response

import config
from utils.audio_source_handler import AudioSourceType, push_browser_audio
from utils.session_models import GeoLocation
from utils.video_source_handler import VideoSourceType, set_browser_frame_from_bytes


# Create a blueprint for better organization
api = Blueprint('api', __name__)

# Global session monitor instance (singleton).
# FocusSessionMonitor is imported lazily to defer loading heavy deps until first use.
session_monitor = None  # type: Optional["FocusSessionMonitor"]

# Max samples accepted in one POST /session/audio body
MAX_AUDIO_SAMPLES_PER_POST = 48000

_VIDEO_SOURCES = {
    "webcam": VideoSourceType.WEBCAM,
    "stream": VideoSourceType.STREAM,
    "browser": VideoSourceType.BROWSER,
}
_AUDIO_SOURCES = {
    "microphone": AudioSourceType.MICROPHONE,
    "browser": AudioSourceType.BROWSER,
}


def _get_monitor():
    """Return the session monitor, creating it on first call (lazy init)."""
    global session_monitor
    if session_monitor is None:
        from focus_session_monitor import FocusSessionMonitor
        session_monitor = FocusSessionMonitor()
    return session_monitor


def _idle_state() -> dict:
    return {
        "trackingState": "idle",
        "isRunning": False,
        "errorMessage": None,
        "metrics": None,
        "report": None,
    }


# ============================================================================
# Static File Routes
# ============================================================================

@api.route("/")
def index():
    """
    Serve the dashboard page.

    Returns:
        Response: HTML file or 404 JSON when the page is not bundled
    """
    try:
        return send_from_directory("static", "index.html")
    except Exception:
        return jsonify({"error": "index.html not found"}), 404


@api.route("/favicon.ico")
def favicon():
    """
    Handle favicon requests.

    Returns:
        Response: Empty 204 response
    """
    return "", 204


# ============================================================================
# Configuration Routes
# ============================================================================

@api.route("/config/all", methods=["GET"])
def get_all_config():
    """
    Get all non-secret configuration (detector thresholds, cadences, media, models).

    Returns:
        JSON: see config.build_config_response()
    """
    model_status = {"loaded": False, "detector": None}
    if session_monitor is not None and session_monitor.landmark_detector is not None:
        model_status = {
            "loaded": session_monitor.landmark_detector.is_available(),
            "detector": session_monitor.landmark_detector.get_name(),
        }
    return jsonify(config.build_config_response(model_status))


# ============================================================================
# Session Lifecycle Routes
# ============================================================================

@api.route("/session/start", methods=["POST"])
def start_session():
    """
    Start a focus session.

    Request Body:
        {
            "videoSource": "webcam" | "stream" | "browser",
            "videoPath": "stream URL (required for stream)",
            "audioSource": "microphone" | "browser",
            "location": {"latitude": 0.0, "longitude": 0.0}   (optional)
        }

    Returns:
        JSON: {"success": true, "message": "...", "trackingState": "active"}
        500 with {"error", "details", "trackingState"} when models or media cannot be acquired
    """
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400

    data = request.get_json(silent=True) or {}
    video_str = str(data.get("videoSource", "webcam")).lower()
    audio_str = str(data.get("audioSource", "microphone")).lower()
    video_path = data.get("videoPath")

    video_source = _VIDEO_SOURCES.get(video_str)
    if not video_source:
        return jsonify({
            "error": f"Invalid videoSource: {video_str}. Must be 'webcam', 'stream', or 'browser'"
        }), 400
    audio_source = _AUDIO_SOURCES.get(audio_str)
    if not audio_source:
        return jsonify({
            "error": f"Invalid audioSource: {audio_str}. Must be 'microphone' or 'browser'"
        }), 400
    if video_source == VideoSourceType.STREAM and not video_path:
        return jsonify({"error": "videoPath is required for videoSource 'stream'"}), 400
    if video_source != VideoSourceType.STREAM:
        video_path = None

    location = GeoLocation.from_dict(data.get("location"))

    try:
        monitor = _get_monitor()
        if not monitor.start_session(video_source, video_path, audio_source, location):
            return jsonify({
                "error": "Failed to start session",
                "details": monitor.error_message,
                "trackingState": monitor.tracking_state.value,
            }), 500

        return jsonify({
            "success": True,
            "message": f"Focus session started from {video_str} + {audio_str}",
            "trackingState": monitor.tracking_state.value,
            "locationCaptured": location is not None,
        })

    except Exception as e:
        return jsonify({
            "error": "Failed to start session",
            "details": str(e)
        }), 500


@api.route("/session/stop", methods=["POST"])
def stop_session():
    """
    Stop the running session. Camera and microphone are released immediately;
    the report is generated in the background (poll GET /session/report).

    Returns:
        JSON: {"success": true, "stats": {...}, "reportRequested": true}
    """
    if session_monitor is None or not session_monitor.is_running:
        return jsonify({"error": "No session running"}), 404
    try:
        stats = session_monitor.stop_session()
        return jsonify({
            "success": True,
            "message": "Focus session stopped",
            "stats": stats.to_dict() if stats else None,
            "reportRequested": True,
        })
    except Exception as e:
        return jsonify({
            "error": "Failed to stop session",
            "details": str(e)
        }), 500


@api.route("/session/state", methods=["GET"])
def get_session_state():
    """
    Live dashboard payload: tracking state, banner message, counters, rolling
    signals, hysteresis flags, impact flash and the 5-second gaze ring.
    """
    if session_monitor is None:
        return jsonify(_idle_state())
    try:
        return jsonify(session_monitor.get_live_state())
    except Exception as e:
        return jsonify({
            "error": "Failed to get session state",
            "details": str(e)
        }), 500


@api.route("/session/stats", methods=["GET"])
def get_session_stats():
    """Session summary (recomputed on every call; frozen once the session stops)."""
    if session_monitor is None or not session_monitor.has_session():
        return jsonify({"error": "No session data available"}), 404
    return jsonify(session_monitor.get_stats().to_dict())


@api.route("/session/history", methods=["GET"])
def get_session_history():
    """
    Snapshot history and the retrospective chart series.

    Returns:
        JSON: {"snapshots": [...], "chartSeries": [...]}
    """
    if session_monitor is None:
        return jsonify({"snapshots": [], "chartSeries": []})
    return jsonify(session_monitor.get_history())


@api.route("/session/live-stream", methods=["GET"])
def session_live_stream():
    """
    Stream live metrics as Server-Sent Events while a session is running.

    Returns:
        Response: text/event-stream; 404 when no session is running
    """
    monitor = session_monitor
    if monitor is None or not monitor.is_running:
        return jsonify({"error": "No session running"}), 404

    updates: "queue.Queue[dict]" = queue.Queue(maxsize=1)

    def on_tick(payload: dict) -> None:
        # Latest wins: drop the unsent update if the client is slow.
        try:
            updates.get_nowait()
        except queue.Empty:
            pass
        try:
            updates.put_nowait(dict(payload))
        except queue.Full:
            pass

    unsubscribe = monitor.aggregator.subscribe(on_tick)

    def generate():
        try:
            while monitor.is_running:
                try:
                    payload = updates.get(timeout=max(0.05, config.LIVE_STREAM_INTERVAL_SEC))
                except queue.Empty:
                    continue
                payload["trackingState"] = monitor.tracking_state.value
                yield f"data: {json.dumps(payload)}\n\n"
            yield "data: [DONE]\n\n"
        finally:
            unsubscribe()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# Report Routes
# ============================================================================

@api.route("/session/report", methods=["GET"])
def get_session_report():
    """
    Report status for the last session.

    Returns:
        JSON: {"isAnalyzing", "reportReady", "analysis", "errorMessage"}
    """
    if session_monitor is None:
        return jsonify({"isAnalyzing": False, "reportReady": False, "analysis": None, "errorMessage": None})
    return jsonify(session_monitor.reports.status())


@api.route("/session/report/retry", methods=["POST"])
def retry_session_report():
    """
    Request the report again for the last finished session.

    Returns:
        202 when started; 409 while a request is outstanding or no session has finished
    """
    if session_monitor is None or not session_monitor.has_finished_session():
        return jsonify({"error": "No finished session to analyze"}), 409
    if not session_monitor.request_analysis():
        return jsonify({"error": "Analysis already in progress"}), 409
    return jsonify({"success": True, "message": "Analysis started"}), 202


@api.route("/session/error/dismiss", methods=["POST"])
def dismiss_session_error():
    """Dismiss the banner message (model, media or analysis failure)."""
    if session_monitor is not None:
        session_monitor.dismiss_error()
    return "", 204


# ============================================================================
# Browser-fed Media Routes
# ============================================================================

@api.route("/session/frame", methods=["POST"])
def session_frame():
    """
    Receive a single frame from the browser (videoSource 'browser').
    Expects raw JPEG body or multipart/form-data with an image file.
    """
    try:
        data = request.get_data()
        if not data:
            if request.files:
                f = request.files.get("frame") or request.files.get("image") or next(iter(request.files.values()), None)
                if f:
                    data = f.read()
        if not data:
            return jsonify({"error": "No image data"}), 400
        if not set_browser_frame_from_bytes(data):
            return jsonify({"error": "Invalid or unsupported image"}), 400
        return "", 204
    except Exception as e:
        return jsonify({"error": "Failed to process frame", "details": str(e)}), 500


@api.route("/session/audio", methods=["POST"])
def session_audio():
    """
    Receive time-domain audio samples from the browser (audioSource 'browser').
    Body: JSON {"samples": [float, ...]} with values in [-1, 1].
    """
    if not request.is_json:
        return jsonify({"error": "Request must be JSON"}), 400
    data = request.get_json(silent=True) or {}
    samples = data.get("samples")
    if not isinstance(samples, list) or not samples:
        return jsonify({"error": "samples must be a non-empty list of numbers"}), 400
    if len(samples) > MAX_AUDIO_SAMPLES_PER_POST:
        return jsonify({"error": f"At most {MAX_AUDIO_SAMPLES_PER_POST} samples per request"}), 400
    values = []
    for s in samples:
        if isinstance(s, bool) or not isinstance(s, (int, float)) or not math.isfinite(s):
            return jsonify({"error": "samples must be finite numbers"}), 400
        values.append(float(s))
    accepted = push_browser_audio(values)
    return jsonify({"accepted": accepted})


def register_routes(app):
    """
    Register all routes with the Flask application.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(api)
