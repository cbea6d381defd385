"""
Landmark Detector Interface Module

This module defines an abstract interface for landmark detection backends so
the signal fusion engine can run against MediaPipe in production and against
scripted, deterministic detectors in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict
import numpy as np


@dataclass
class FaceLandmarks:
    """
    One detected face.

    Landmarks are normalized image coordinates (x, y in 0-1, z relative depth)
    indexed like the MediaPipe face mesh.
    """
    landmarks: np.ndarray  # (N, 3) array
    blendshapes: Optional[Dict[str, float]] = None  # categoryName -> score (0-1)

    def blendshape(self, name: str) -> float:
        """Score of one blendshape category; 0.0 when absent."""
        if not self.blendshapes:
            return 0.0
        return float(self.blendshapes.get(name, 0.0))


@dataclass
class HandLandmarks:
    """One detected hand (21 normalized points for MediaPipe)."""
    landmarks: np.ndarray  # (21, 3) array


@dataclass
class LandmarkDetectionResult:
    """Everything the detector found in one frame. Either list may be empty."""
    faces: List[FaceLandmarks] = field(default_factory=list)
    hands: List[HandLandmarks] = field(default_factory=list)

    @property
    def primary_face(self) -> Optional[FaceLandmarks]:
        return self.faces[0] if self.faces else None

    @property
    def has_hands(self) -> bool:
        return any(h.landmarks is not None and len(h.landmarks) > 0 for h in self.hands)


class LandmarkDetectorInterface(ABC):
    """
    Abstract interface for landmark detection implementations.

    Implementations must accept strictly increasing timestamps (video mode).
    """

    @abstractmethod
    def detect(self, frame: np.ndarray, timestamp_ms: int) -> LandmarkDetectionResult:
        """
        Detect face and hand landmarks in a frame.

        Args:
            frame: BGR image array (OpenCV format)
            timestamp_ms: Monotonic milliseconds since session start

        Returns:
            LandmarkDetectionResult (possibly empty)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this detector loaded its models and can be used.

        Returns:
            True if the detector can be used, False otherwise
        """
        pass

    @abstractmethod
    def get_name(self) -> str:
        """
        Get the name of this detection backend.

        Returns:
            String name (e.g., "mediapipe")
        """
        pass

    def reset(self) -> None:
        """
        Called when a new session starts and timestamps restart at 0.

        Default implementation does nothing.
        """
        pass

    def close(self) -> None:
        """
        Clean up resources. Override if needed.

        Default implementation does nothing.
        """
        pass
