"""
Video Source Handler Module

This module provides a unified interface for the live frame sources a session
can use:
- Webcam (default camera, via OpenCV)
- Video streams (RTSP, HTTP, etc.)
- Browser (frames captured by the dashboard and POSTed as JPEG)

Every source behaves as a latest-frame source: a reader always gets the
newest available frame and intermediate frames are dropped, so a slow tick
never builds a backlog.
"""

import logging
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

import cv2
import numpy as np

import config

logger = logging.getLogger(__name__)

# Shared state for the browser source: latest frame pushed by the dashboard
_browser_frame: Optional[np.ndarray] = None
_browser_frame_lock = threading.Lock()


def set_browser_frame(frame_bgr: Optional[np.ndarray]) -> None:
    """Set the latest frame received from the browser."""
    global _browser_frame
    with _browser_frame_lock:
        _browser_frame = frame_bgr.copy() if frame_bgr is not None else None


def get_browser_frame() -> Optional[np.ndarray]:
    """Get a copy of the latest browser frame (does not clear). Returns None if none available."""
    with _browser_frame_lock:
        out = _browser_frame
        return out.copy() if out is not None else None


def set_browser_frame_from_bytes(image_bytes: bytes) -> bool:
    """
    Decode image bytes (e.g. JPEG) to BGR and set as latest browser frame.
    Frames wider than BROWSER_FRAME_MAX_WIDTH are resized to reduce memory and processing time.
    Returns True if decoding and set succeeded, False otherwise.
    """
    if not image_bytes:
        return False
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    frame = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if frame is None:
        return False
    h, w = frame.shape[:2]
    max_w = config.BROWSER_FRAME_MAX_WIDTH
    if w > max_w:
        new_h = int(round(h * max_w / w))
        frame = cv2.resize(frame, (max_w, new_h), interpolation=cv2.INTER_AREA)
    set_browser_frame(frame)
    return True


class VideoSourceType(Enum):
    """Enumeration of supported video source types."""
    WEBCAM = "webcam"
    STREAM = "stream"
    BROWSER = "browser"


def _open_first_camera() -> Optional[cv2.VideoCapture]:
    apis = [cv2.CAP_DSHOW, cv2.CAP_MSMF, cv2.CAP_ANY] if sys.platform == "win32" else [cv2.CAP_ANY]
    for api in apis:
        for index in (0, 1, 2):
            cap = cv2.VideoCapture(index, api)
            if cap.isOpened() and cap.read()[0]:
                return cap
            cap.release()
    return None


class VideoSourceHandler:
    """
    Handler for the session's video source.

    Usage:
        handler = VideoSourceHandler()
        if handler.initialize_source(VideoSourceType.WEBCAM):
            ok, frame = handler.read_frame()
    """

    def __init__(self):
        """Initialize the video source handler."""
        self.cap: Optional[cv2.VideoCapture] = None
        self.source_type: Optional[VideoSourceType] = None
        self.source_path: Optional[str] = None

    def initialize_source(self, source_type: VideoSourceType, source_path: Optional[str] = None) -> bool:
        """
        Open a video source.

        Args:
            source_type: WEBCAM, STREAM or BROWSER
            source_path: Stream URL (required for STREAM)

        Returns:
            True if the source is ready to deliver frames
        """
        self.release()
        self.source_type = source_type
        self.source_path = source_path

        try:
            if source_type == VideoSourceType.WEBCAM:
                self.cap = _open_first_camera()
                if self.cap is None:
                    return False
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.CAMERA_WIDTH)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.CAMERA_HEIGHT)
                self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.STREAM:
                if not source_path:
                    raise ValueError("source_path is required for STREAM source type")
                self.cap = cv2.VideoCapture(source_path)
                self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

            elif source_type == VideoSourceType.BROWSER:
                # Frames arrive via POST /session/frame; start from a clean slate.
                set_browser_frame(None)
                self.cap = None
                return True

            else:
                raise ValueError(f"Unsupported source type: {source_type}")

            if self.cap is None or not self.cap.isOpened():
                self.release()
                return False
            return True

        except Exception as e:
            logger.warning("Error initializing video source: %s", e)
            self.release()
            return False

    def read_frame(self) -> Tuple[bool, Optional[np.ndarray]]:
        """
        Read the newest frame from the video source.

        Returns:
            Tuple of (success, frame):
            - success: True if a frame was available
            - frame: BGR image array if successful, None otherwise
        """
        if self.source_type == VideoSourceType.BROWSER:
            frame = get_browser_frame()
            return (True, frame) if frame is not None else (False, None)

        if not self.cap or not self.cap.isOpened():
            return False, None

        ret, frame = self.cap.read()
        if not ret or frame is None:
            return False, None
        return True, frame

    def release(self) -> None:
        """Release the current video source and free resources."""
        if self.cap:
            self.cap.release()
            self.cap = None
        if self.source_type == VideoSourceType.BROWSER:
            set_browser_frame(None)
        self.source_type = None
        self.source_path = None

    def __del__(self):
        """Cleanup on deletion."""
        self.release()
