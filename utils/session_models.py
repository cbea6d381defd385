"""
Session data model.

Plain records shared by the detectors, the aggregator, the report requester and
the HTTP layer. Snapshots, samples and analyses are frozen once created; the
dashboard receives them through to_dict() with camelCase keys.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


def round_half_up(value: float) -> int:
    """Round .5 upwards (0.5 -> 1, 2.5 -> 3) instead of Python's banker's rounding."""
    return int(math.floor(value + 0.5))


class TrackingState(Enum):
    """Lifecycle of the monitor as seen by the dashboard."""
    IDLE = "idle"        # Models ready (or not yet loaded), no session running
    LOADING = "loading"  # Landmarker models are being loaded
    ACTIVE = "active"    # Detection loop is running
    ERROR = "error"      # Model load or media acquisition failed


@dataclass(frozen=True)
class GeoLocation:
    """Optional location captured once at session start."""
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["GeoLocation"]:
        """Parse {latitude, longitude}; returns None when missing or not numeric."""
        if not isinstance(data, dict):
            return None
        try:
            lat = float(data["latitude"])
            lon = float(data["longitude"])
        except (KeyError, TypeError, ValueError):
            return None
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return None
        return cls(latitude=lat, longitude=lon)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class GazeSample:
    """Looking-at-screen flag at one sampling instant (state is 0 or 1)."""
    time: float
    state: int

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.time, "state": self.state}


@dataclass(frozen=True)
class EventCounters:
    """Read-only view of the six session counters."""
    look_count: int = 0
    blink_count: int = 0
    fidget_count: int = 0
    thump_count: int = 0
    brow_furrow_count: int = 0
    voice_seconds: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "lookCount": self.look_count,
            "blinkCount": self.blink_count,
            "fidgetCount": self.fidget_count,
            "thumpCount": self.thump_count,
            "browFurrowCount": self.brow_furrow_count,
            "voiceSeconds": self.voice_seconds,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable point-in-time capture of all tracked metrics."""
    timestamp: float  # ms since session start
    is_looking: bool
    blink_count: int
    fidget_count: int
    noise_level: float
    brow_furrow_count: int
    brightness: float
    system_stress: float
    thump_count: int
    head_tilt: float
    focus_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "isLooking": self.is_looking,
            "blinkCount": self.blink_count,
            "fidgetCount": self.fidget_count,
            "noiseLevel": self.noise_level,
            "browFurrowCount": self.brow_furrow_count,
            "brightness": self.brightness,
            "systemStress": self.system_stress,
            "thumpCount": self.thump_count,
            "headTilt": self.head_tilt,
            "focusScore": self.focus_score,
        }


@dataclass(frozen=True)
class SessionStats:
    """
    Derived session summary. Never stored; recomputed from counters,
    elapsed time and the gaze ring whenever asked for.
    """
    total_looks: int
    total_time_seconds: int
    average_focus_duration: int
    engagement_score: int
    total_blinks: int
    hand_fidget_count: int
    avg_noise_level: float
    voice_time_seconds: int
    thump_count: int
    head_tilt_degrees: float
    brow_furrow_count: int
    avg_brightness: float
    system_stress_score: float  # device load, not user stress
    location: Optional[GeoLocation] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "totalLooks": self.total_looks,
            "totalTimeSeconds": self.total_time_seconds,
            "averageFocusDuration": self.average_focus_duration,
            "engagementScore": self.engagement_score,
            "totalBlinks": self.total_blinks,
            "handFidgetCount": self.hand_fidget_count,
            "avgNoiseLevel": self.avg_noise_level,
            "voiceTimeSeconds": self.voice_time_seconds,
            "thumpCount": self.thump_count,
            "headTiltDegrees": self.head_tilt_degrees,
            "browFurrowCount": self.brow_furrow_count,
            "avgBrightness": self.avg_brightness,
            "systemStressScore": self.system_stress_score,
        }
        if self.location is not None:
            out["location"] = self.location.to_dict()
        return out


ENGAGEMENT_LEVELS = ("High", "Medium", "Low")


@dataclass(frozen=True)
class AIAnalysis:
    """Result of the end-of-session summarization request."""
    summary: str
    tips: List[str] = field(default_factory=list)
    engagement_level: str = "Medium"
    local_weather: Optional[str] = None
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "summary": self.summary,
            "tips": list(self.tips),
            "engagementLevel": self.engagement_level,
            "isFallback": self.is_fallback,
        }
        if self.local_weather:
            out["localWeather"] = self.local_weather
        return out
