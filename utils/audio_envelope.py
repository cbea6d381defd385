"""
Audio Envelope Analyzer

Turns one pull of time-domain samples into an RMS amplitude, a slow moving
average of that RMS (the baseline the impact detector compares against) and a
smoothed 0-100 noise level for the dashboard.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

import config

# Floor applied before log10 so silence maps to -100 dB instead of -inf.
RMS_LOG_FLOOR = 1e-5
AVG_RMS_DECAY = 0.98
NOISE_DECAY = 0.95


@dataclass(frozen=True)
class AudioEnvelope:
    """Result of one analyze() call."""
    rms: float
    avg_rms: float  # moving average after this pull
    level: float  # instantaneous 0-100 level
    noise_level: float  # smoothed 0-100 level (what the dashboard shows)


def compute_rms(samples: Optional[Sequence[float]]) -> float:
    """Root-mean-square of the buffer; 0.0 for an empty or missing buffer."""
    if samples is None:
        return 0.0
    arr = np.asarray(samples, dtype=np.float64)
    if arr.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(arr * arr)))
    return rms if math.isfinite(rms) else 0.0


def rms_to_level(rms: float) -> float:
    """Map RMS to a 0-100 loudness level via decibels: clamp((dB + 100) * 1.5)."""
    db = 20.0 * math.log10(max(rms, RMS_LOG_FLOOR))
    return max(0.0, min(100.0, (db + 100.0) * 1.5))


class AudioEnvelopeAnalyzer:
    """
    Stateful envelope follower. Holds the RMS moving average and the smoothed
    noise level between pulls; reset() restores the seeds for a new session.
    """

    def __init__(self, avg_rms_seed: Optional[float] = None):
        self._seed = float(config.AVG_RMS_SEED if avg_rms_seed is None else avg_rms_seed)
        self.avg_rms = self._seed
        self.noise_level = 0.0

    def reset(self) -> None:
        self.avg_rms = self._seed
        self.noise_level = 0.0

    def analyze(self, samples: Optional[Sequence[float]]) -> AudioEnvelope:
        """
        Process one audio pull.

        The moving average is updated before the envelope is returned, so the
        spike test downstream compares against the average including this pull.
        """
        rms = compute_rms(samples)
        self.avg_rms = self.avg_rms * AVG_RMS_DECAY + rms * (1.0 - AVG_RMS_DECAY)
        level = rms_to_level(rms)
        self.noise_level = self.noise_level * NOISE_DECAY + level * (1.0 - NOISE_DECAY)
        return AudioEnvelope(rms=rms, avg_rms=self.avg_rms, level=level, noise_level=self.noise_level)
