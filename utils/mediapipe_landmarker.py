"""
MediaPipe Landmark Detection Implementation

This module provides a MediaPipe Tasks implementation of the
LandmarkDetectorInterface:
1. FaceLandmarker in VIDEO mode with blendshapes (1 face)
2. HandLandmarker in VIDEO mode (up to MAX_NUM_HANDS hands)

Model bundles are downloaded once into config.MODEL_DIR on first use.
"""

import logging
import os
from typing import Optional, List, Dict

import cv2
import numpy as np
import mediapipe as mp
import requests
from mediapipe.tasks import python as mp_python
from mediapipe.tasks.python import vision as mp_vision

import config
from utils.landmark_detector_interface import (
    LandmarkDetectorInterface,
    LandmarkDetectionResult,
    FaceLandmarks,
    HandLandmarks,
)

logger = logging.getLogger(__name__)


def ensure_model(url: str, path: str, timeout: Optional[float] = None) -> str:
    """Download a model once and cache it locally. Raises on HTTP failure."""
    if os.path.exists(path):
        return path
    os.makedirs(os.path.dirname(path), exist_ok=True)
    logger.info("Downloading landmarker model %s", url)
    r = requests.get(url, timeout=timeout or config.MODEL_DOWNLOAD_TIMEOUT_SEC)
    r.raise_for_status()
    tmp_path = path + ".part"
    with open(tmp_path, "wb") as f:
        f.write(r.content)
    os.replace(tmp_path, path)
    return path


def _to_array(points) -> np.ndarray:
    return np.array([[p.x, p.y, p.z] for p in points], dtype=np.float32)


class MediaPipeLandmarkDetector(LandmarkDetectorInterface):
    """
    Face + hand landmark detector on the MediaPipe Tasks API.

    Both landmarkers run in VIDEO mode, which requires strictly increasing
    timestamps; a repeated or earlier timestamp is bumped by 1 ms.
    Each session restarts at 0, so reset() shifts the new session past the
    last timestamp the graphs have seen.
    """

    def __init__(
        self,
        face_model_path: Optional[str] = None,
        hand_model_path: Optional[str] = None,
        max_num_hands: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
    ):
        """
        Load both landmarkers. Any failure (download, corrupt bundle, missing
        runtime) propagates to the caller as an acquisition failure.
        """
        conf = float(config.MIN_DETECTION_CONFIDENCE if min_detection_confidence is None else min_detection_confidence)
        conf = max(0.01, min(0.99, conf))
        num_hands = int(config.MAX_NUM_HANDS if max_num_hands is None else max_num_hands)

        face_path = face_model_path or ensure_model(
            config.FACE_LANDMARKER_MODEL_URL, os.path.join(config.MODEL_DIR, "face_landmarker.task")
        )
        hand_path = hand_model_path or ensure_model(
            config.HAND_LANDMARKER_MODEL_URL, os.path.join(config.MODEL_DIR, "hand_landmarker.task")
        )

        face_options = mp_vision.FaceLandmarkerOptions(
            base_options=mp_python.BaseOptions(model_asset_path=face_path),
            running_mode=mp_vision.RunningMode.VIDEO,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=False,
            num_faces=1,
            min_face_detection_confidence=conf,
            min_face_presence_confidence=conf,
            min_tracking_confidence=conf,
        )
        hand_options = mp_vision.HandLandmarkerOptions(
            base_options=mp_python.BaseOptions(model_asset_path=hand_path),
            running_mode=mp_vision.RunningMode.VIDEO,
            num_hands=num_hands,
            min_hand_detection_confidence=conf,
            min_hand_presence_confidence=conf,
            min_tracking_confidence=conf,
        )
        self.face_landmarker = mp_vision.FaceLandmarker.create_from_options(face_options)
        try:
            self.hand_landmarker = mp_vision.HandLandmarker.create_from_options(hand_options)
        except Exception:
            self.face_landmarker.close()
            raise
        self._last_timestamp_ms: int = -1
        self._offset_ms: int = 0
        self._available = True

    def reset(self) -> None:
        """Start a new session timeline just after the last timestamp sent to the graphs."""
        self._offset_ms = self._last_timestamp_ms + 1

    def _next_timestamp(self, timestamp_ms: int) -> int:
        ts = int(timestamp_ms) + self._offset_ms
        if ts <= self._last_timestamp_ms:
            ts = self._last_timestamp_ms + 1
        self._last_timestamp_ms = ts
        return ts

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> LandmarkDetectionResult:
        """
        Run both landmarkers on one BGR frame.

        Returns:
            LandmarkDetectionResult with normalized landmarks and blendshape scores
        """
        if frame is None or frame.size == 0 or not self._available:
            return LandmarkDetectionResult()

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        ts = self._next_timestamp(timestamp_ms)

        faces: List[FaceLandmarks] = []
        face_res = self.face_landmarker.detect_for_video(mp_image, ts)
        if face_res and face_res.face_landmarks:
            shapes_per_face = getattr(face_res, "face_blendshapes", None) or []
            for i, points in enumerate(face_res.face_landmarks):
                blendshapes: Optional[Dict[str, float]] = None
                if i < len(shapes_per_face):
                    blendshapes = {c.category_name: float(c.score) for c in shapes_per_face[i]}
                faces.append(FaceLandmarks(landmarks=_to_array(points), blendshapes=blendshapes))

        hands: List[HandLandmarks] = []
        hand_res = self.hand_landmarker.detect_for_video(mp_image, ts)
        if hand_res and hand_res.hand_landmarks:
            for points in hand_res.hand_landmarks:
                hands.append(HandLandmarks(landmarks=_to_array(points)))

        return LandmarkDetectionResult(faces=faces, hands=hands)

    def is_available(self) -> bool:
        """Check if both landmarkers are loaded."""
        return self._available

    def get_name(self) -> str:
        """Get detector name."""
        return "mediapipe"

    def close(self) -> None:
        """Release both landmarkers."""
        self._available = False
        for attr in ("face_landmarker", "hand_landmarker"):
            landmarker = getattr(self, attr, None)
            if landmarker is not None:
                try:
                    landmarker.close()
                except Exception as e:
                    logger.warning("Closing %s failed: %s", attr, e)
                setattr(self, attr, None)
