"""
Environment Sampler Module

Lower-frequency measurements that run alongside the detectors:

- Ambient brightness: the current frame is shrunk to a small raster (64x48 by
  default) and the mean Rec.601 luma is reported, at most once per second.
- System stress: a proxy for *device* load (not user stress). Every rolling
  one-second window the loop frame rate is measured against a 60 fps reference;
  host memory pressure is blended in when psutil can report it.
"""

import math
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

import config

try:
    import psutil
except ImportError:
    psutil = None


FPS_STRESS_GAIN = 4.0
FPS_STRESS_WEIGHT = 0.8
MEMORY_STRESS_WEIGHT = 0.2


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Brightness
# ---------------------------------------------------------------------------

def estimate_brightness(
    frame: Optional[np.ndarray],
    width: Optional[int] = None,
    height: Optional[int] = None,
) -> Optional[float]:
    """
    Mean luma (0-255) of a downsampled copy of the frame.

    Args:
        frame: BGR image (OpenCV order); a 2-D array is treated as grayscale
        width, height: Sampling raster size (defaults from config)

    Returns:
        Mean of 0.299R + 0.587G + 0.114B, or None for an empty frame
    """
    if frame is None or frame.size == 0:
        return None
    w = int(width or config.BRIGHTNESS_SAMPLE_WIDTH)
    h = int(height or config.BRIGHTNESS_SAMPLE_HEIGHT)
    small = cv2.resize(frame, (w, h), interpolation=cv2.INTER_AREA).astype(np.float64)
    if small.ndim == 2:
        return float(np.mean(small))
    b, g, r = small[:, :, 0], small[:, :, 1], small[:, :, 2]
    luma = 0.299 * r + 0.587 * g + 0.114 * b
    value = float(np.mean(luma))
    return value if math.isfinite(value) else None


class BrightnessSampler:
    """Rate-limits estimate_brightness(); the first call of a session always samples."""

    def __init__(self, interval_ms: Optional[float] = None):
        self.interval_ms = float(config.BRIGHTNESS_SAMPLE_INTERVAL_MS if interval_ms is None else interval_ms)
        self.last_check_ms: Optional[float] = None
        self.brightness: float = 0.0

    def reset(self) -> None:
        self.last_check_ms = None
        self.brightness = 0.0

    def is_due(self, now_ms: float) -> bool:
        return self.last_check_ms is None or now_ms - self.last_check_ms > self.interval_ms

    def maybe_sample(self, now_ms: float, frame: Optional[np.ndarray]) -> Optional[float]:
        """Return a fresh brightness value when due and the frame is usable, else None."""
        if not self.is_due(now_ms):
            return None
        self.last_check_ms = now_ms
        value = estimate_brightness(frame)
        if value is not None:
            self.brightness = value
        return value


# ---------------------------------------------------------------------------
# Host telemetry and system stress
# ---------------------------------------------------------------------------

class HostTelemetry(ABC):
    """Optional source of memory-pressure readings for the stress proxy."""

    @abstractmethod
    def memory_pressure(self) -> Optional[float]:
        """
        Used memory as a percentage of the limit (0-100).

        Returns:
            Percentage, or None when the host does not expose it
        """
        pass


class PsutilHostTelemetry(HostTelemetry):
    """Memory pressure from psutil; None when psutil is not installed."""

    def memory_pressure(self) -> Optional[float]:
        if psutil is None:
            return None
        try:
            vm = psutil.virtual_memory()
            if not vm.total:
                return None
            return float(vm.used) / float(vm.total) * 100.0
        except Exception:
            return None


class SystemStressMonitor:
    """
    Rolling one-second frame-rate window.

    record_frame() is called once per tick; when the window has elapsed it
    returns the combined stress score 0.8 * fpsStress + 0.2 * memStress.
    """

    def __init__(
        self,
        telemetry: Optional[HostTelemetry] = None,
        window_ms: Optional[float] = None,
        reference_fps: Optional[float] = None,
    ):
        self.telemetry = telemetry
        self.window_ms = float(config.STRESS_WINDOW_MS if window_ms is None else window_ms)
        self.reference_fps = float(config.STRESS_REFERENCE_FPS if reference_fps is None else reference_fps)
        self.reset(0.0)

    def reset(self, now_ms: float = 0.0) -> None:
        self.frames_in_window = 0
        self.window_start_ms = float(now_ms)
        self.fps: float = 0.0
        self.stress: float = 0.0

    def _memory_stress(self) -> float:
        if self.telemetry is None:
            return 0.0
        value = self.telemetry.memory_pressure()
        if value is None or not math.isfinite(value):
            return 0.0
        return _clamp(value)

    def record_frame(self, now_ms: float) -> Optional[float]:
        """Count one frame; returns the new stress score when a window closes."""
        self.frames_in_window += 1
        elapsed = now_ms - self.window_start_ms
        if elapsed < self.window_ms or elapsed <= 0:
            return None
        self.fps = self.frames_in_window * 1000.0 / elapsed
        fps_stress = _clamp((self.reference_fps - self.fps) * FPS_STRESS_GAIN)
        combined = FPS_STRESS_WEIGHT * fps_stress + MEMORY_STRESS_WEIGHT * self._memory_stress()
        self.stress = combined if math.isfinite(combined) else 0.0
        self.frames_in_window = 0
        self.window_start_ms = now_ms
        return self.stress
