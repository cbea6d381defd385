"""
Event detector tests.

Edge-triggered counting, landmark geometry, blink/brow hysteresis, impact
debounce and voice-second pacing.
"""

import sys
import os
import random

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

import numpy as np

from tests.fixtures.synthetic_signals import make_face_landmarks, make_blendshapes


class TestEdgeTriggeredCounter(unittest.TestCase):
    """Generic two-phase counter."""

    def test_rising_edge_counts_each_entry_once(self):
        """Holding the active state does not re-fire."""
        from utils.event_detectors import EdgeTriggeredCounter, CountedEdge
        c = EdgeTriggeredCounter("x", CountedEdge.RISING)
        for s in [False, True, True, False, True, True, True, False]:
            c.transition(s)
        self.assertEqual(c.count, 2)
        self.assertFalse(c.is_active)

    def test_falling_edge_counts_on_exit(self):
        """Falling-edge counters fire when leaving the active phase."""
        from utils.event_detectors import EdgeTriggeredCounter, CountedEdge
        c = EdgeTriggeredCounter("x", CountedEdge.FALLING)
        fired = [c.transition(s) for s in [True, True, False, False, True, False]]
        self.assertEqual(fired, [False, False, True, False, False, True])
        self.assertEqual(c.count, 2)

    def test_unknown_signal_holds_phase(self):
        """None leaves the phase untouched and never counts."""
        from utils.event_detectors import EdgeTriggeredCounter
        c = EdgeTriggeredCounter("x")
        c.transition(True)
        self.assertFalse(c.transition(None))
        self.assertTrue(c.is_active)
        self.assertFalse(c.transition(True))
        self.assertEqual(c.count, 1)

    def test_count_equals_number_of_rising_transitions(self):
        """For any boolean sequence the count is the number of False->True edges from IDLE."""
        from utils.event_detectors import EdgeTriggeredCounter
        rng = random.Random(7)
        for _ in range(20):
            seq = [rng.random() < 0.5 for _ in range(200)]
            c = EdgeTriggeredCounter("x")
            for s in seq:
                c.transition(s)
            expected = sum(1 for prev, cur in zip([False] + seq, seq) if cur and not prev)
            self.assertEqual(c.count, expected)

    def test_count_never_decreases(self):
        """Counts are monotonic within a session."""
        from utils.event_detectors import EdgeTriggeredCounter
        rng = random.Random(11)
        c = EdgeTriggeredCounter("x")
        last = 0
        for _ in range(500):
            c.transition(rng.choice([True, False, None]))
            self.assertGreaterEqual(c.count, last)
            last = c.count

    def test_reset_clears_count_and_phase(self):
        """reset() returns the counter to IDLE with zero count."""
        from utils.event_detectors import EdgeTriggeredCounter, DetectorPhase
        c = EdgeTriggeredCounter("x")
        c.transition(True)
        c.reset()
        self.assertEqual(c.count, 0)
        self.assertEqual(c.phase, DetectorPhase.IDLE)


class TestLandmarkGeometry(unittest.TestCase):
    """Gaze ratio and head tilt from face landmarks."""

    def test_gaze_ratio_matches_nose_position(self):
        """Nose placed at 0.8 of the eye span reads back as 0.8."""
        from utils.event_detectors import gaze_ratio
        self.assertAlmostEqual(gaze_ratio(make_face_landmarks(0.8)), 0.8, places=6)
        self.assertAlmostEqual(gaze_ratio(make_face_landmarks(0.5)), 0.5, places=6)

    def test_gaze_ratio_degenerate_span(self):
        """Coincident eye corners give None instead of dividing by zero."""
        from utils.event_detectors import gaze_ratio
        lm = make_face_landmarks(0.5)
        lm[263] = lm[33]
        self.assertIsNone(gaze_ratio(lm))

    def test_gaze_ratio_missing_landmarks(self):
        """Too few landmarks or None gives None."""
        from utils.event_detectors import gaze_ratio
        self.assertIsNone(gaze_ratio(None))
        self.assertIsNone(gaze_ratio(np.zeros((10, 3))))

    def test_head_tilt_is_absolute(self):
        """Tilt is the magnitude of the eye-line roll, no direction."""
        from utils.event_detectors import head_tilt_degrees
        self.assertAlmostEqual(head_tilt_degrees(make_face_landmarks(tilt_deg=0.0)), 0.0, places=4)
        self.assertAlmostEqual(head_tilt_degrees(make_face_landmarks(tilt_deg=30.0)), 30.0, places=4)
        self.assertAlmostEqual(head_tilt_degrees(make_face_landmarks(tilt_deg=-30.0)), 30.0, places=4)


class TestGazeDetector(unittest.TestCase):
    """Look counting."""

    def test_ratio_sequence_counts_two_looks(self):
        """Ratios 0.5, 0.5, 0.8, 0.5 count a look on the first and fourth tick."""
        from utils.event_detectors import GazeDetector
        g = GazeDetector()
        fired = [g.update(make_face_landmarks(r)) for r in [0.5, 0.5, 0.8, 0.5]]
        self.assertEqual(fired, [True, False, False, True])
        self.assertEqual(g.count, 2)

    def test_bounds_are_exclusive(self):
        """A ratio exactly on a bound is not looking."""
        from utils.event_detectors import GazeDetector
        g = GazeDetector(ratio_min=0.35, ratio_max=0.65)
        self.assertFalse(g.is_looking_ratio(0.35))
        self.assertFalse(g.is_looking_ratio(0.65))
        self.assertTrue(g.is_looking_ratio(0.36))

    def test_no_face_holds_state(self):
        """Losing the face does not end the look; its return does not re-count."""
        from utils.event_detectors import GazeDetector
        g = GazeDetector()
        g.update(make_face_landmarks(0.5))
        g.update(None)
        self.assertTrue(g.is_active)
        g.update(make_face_landmarks(0.5))
        self.assertEqual(g.count, 1)

    def test_degenerate_face_is_not_looking(self):
        """A face with zero eye span ends the look."""
        from utils.event_detectors import GazeDetector
        g = GazeDetector()
        g.update(make_face_landmarks(0.5))
        lm = make_face_landmarks(0.5)
        lm[263] = lm[33]
        g.update(lm)
        self.assertFalse(g.is_active)
        self.assertIsNone(g.last_ratio)


class TestBlendshapeDetectors(unittest.TestCase):
    """Blink and brow furrow."""

    def test_blink_counts_on_reopen(self):
        """Closed then open is one blink, counted on the reopening tick."""
        from utils.event_detectors import BlinkDetector
        b = BlinkDetector()
        self.assertFalse(b.update(make_blendshapes(blink=0.8)))
        self.assertTrue(b.is_active)
        self.assertFalse(b.update(make_blendshapes(blink=0.8)))
        self.assertTrue(b.update(make_blendshapes(blink=0.1)))
        self.assertEqual(b.count, 1)

    def test_one_eye_closed_is_not_a_blink(self):
        """Both eyes must exceed the threshold."""
        from utils.event_detectors import BlinkDetector
        b = BlinkDetector()
        b.update(make_blendshapes(blink=0.0, eyeBlinkLeft=0.9))
        b.update(make_blendshapes(blink=0.0))
        self.assertEqual(b.count, 0)

    def test_brow_furrow_onset(self):
        """Brow furrow counts on onset; the threshold itself is not above it."""
        from utils.event_detectors import BrowFurrowDetector
        d = BrowFurrowDetector(threshold=0.4)
        d.update(make_blendshapes(brow_down=0.4))
        self.assertEqual(d.count, 0)
        self.assertTrue(d.update(make_blendshapes(brow_down=0.5)))
        self.assertFalse(d.update(make_blendshapes(brow_down=0.6)))
        self.assertEqual(d.count, 1)

    def test_missing_blendshapes_hold(self):
        """No blendshapes this tick holds the phase."""
        from utils.event_detectors import BlinkDetector
        b = BlinkDetector()
        b.update(make_blendshapes(blink=0.9))
        b.update(None)
        self.assertTrue(b.is_active)
        self.assertEqual(b.count, 0)


class TestHandFidgetDetector(unittest.TestCase):
    """Hand entering the frame."""

    def test_counts_each_appearance(self):
        """Hand present, absent, present again counts twice."""
        from utils.event_detectors import HandFidgetDetector
        d = HandFidgetDetector()
        for present in [False, True, True, False, True]:
            d.update(present)
        self.assertEqual(d.count, 2)


class TestImpactDetector(unittest.TestCase):
    """Debounced thump counting."""

    def test_first_spike_fires(self):
        """A spike right at session start is counted."""
        from utils.event_detectors import ImpactDetector
        d = ImpactDetector()
        self.assertTrue(d.update(0.0, 0.09, 0.01))
        self.assertEqual(d.count, 1)

    def test_spikes_inside_debounce_count_once(self):
        """Two spikes 400 ms apart count once."""
        from utils.event_detectors import ImpactDetector
        d = ImpactDetector(debounce_ms=500)
        d.update(1000.0, 0.09, 0.01)
        d.update(1400.0, 0.09, 0.01)
        self.assertEqual(d.count, 1)

    def test_spikes_outside_debounce_count_twice(self):
        """Two spikes 600 ms apart count twice."""
        from utils.event_detectors import ImpactDetector
        d = ImpactDetector(debounce_ms=500)
        d.update(1000.0, 0.09, 0.01)
        d.update(1600.0, 0.09, 0.01)
        self.assertEqual(d.count, 2)

    def test_relative_spike(self):
        """RMS above four times the average is a spike even below the floor."""
        from utils.event_detectors import ImpactDetector
        d = ImpactDetector()
        self.assertTrue(d.is_spike(0.05, 0.01))
        self.assertFalse(d.is_spike(0.03, 0.01))

    def test_flash_window(self):
        """The flash lasts the configured duration after an impact."""
        from utils.event_detectors import ImpactDetector, DetectorPhase
        d = ImpactDetector(flash_ms=200)
        self.assertFalse(d.is_flashing(0.0))
        d.update(1000.0, 0.2, 0.01)
        self.assertTrue(d.is_flashing(1100.0))
        self.assertEqual(d.phase(1100.0), DetectorPhase.ACTIVE)
        self.assertFalse(d.is_flashing(1200.0))
        self.assertEqual(d.phase(1300.0), DetectorPhase.IDLE)


class TestVoiceActivityDetector(unittest.TestCase):
    """Voice seconds."""

    def test_at_most_one_per_interval(self):
        """Continuous speech over 3 s sampled every 100 ms counts two voice-seconds."""
        from utils.event_detectors import VoiceActivityDetector
        v = VoiceActivityDetector(rms_threshold=0.03, interval_ms=1000)
        for t in range(100, 3001, 100):
            v.update(float(t), 0.05)
        self.assertEqual(v.count, 2)

    def test_independent_of_sampling_rate(self):
        """Sampling every 10 ms gives the same count as every 100 ms."""
        from utils.event_detectors import VoiceActivityDetector
        v = VoiceActivityDetector(rms_threshold=0.03, interval_ms=1000)
        for t in range(10, 3001, 10):
            v.update(float(t), 0.05)
        self.assertEqual(v.count, 2)

    def test_threshold_is_exclusive(self):
        """RMS exactly at the threshold is not speech."""
        from utils.event_detectors import VoiceActivityDetector
        v = VoiceActivityDetector(rms_threshold=0.03, interval_ms=1000)
        v.update(5000.0, 0.03)
        self.assertEqual(v.count, 0)

    def test_reset_restarts_interval_at_session_start(self):
        """After reset the first voice-second needs a full interval from the new start."""
        from utils.event_detectors import VoiceActivityDetector
        v = VoiceActivityDetector(rms_threshold=0.03, interval_ms=1000)
        v.update(5000.0, 0.1)
        v.reset(session_start_ms=10000.0)
        self.assertEqual(v.count, 0)
        self.assertFalse(v.update(10500.0, 0.1))
        self.assertTrue(v.update(11001.0, 0.1))


class TestEventDetectorsBundle(unittest.TestCase):
    """All six detectors together."""

    def test_counters_and_flags(self):
        """counters() and hysteresis_flags() reflect the individual detectors."""
        from utils.event_detectors import EventDetectors
        d = EventDetectors()
        d.gaze.update(make_face_landmarks(0.5))
        d.fidget.update(True)
        d.impact.update(0.0, 0.5, 0.01)
        counters = d.counters()
        self.assertEqual(counters.look_count, 1)
        self.assertEqual(counters.fidget_count, 1)
        self.assertEqual(counters.thump_count, 1)
        flags = d.hysteresis_flags()
        self.assertTrue(flags["lastLookingState"])
        self.assertTrue(flags["isHandInFrame"])
        self.assertFalse(flags["isBlinking"])
        d.reset()
        self.assertEqual(d.counters().to_dict(), {
            "lookCount": 0, "blinkCount": 0, "fidgetCount": 0,
            "thumpCount": 0, "browFurrowCount": 0, "voiceSeconds": 0,
        })


if __name__ == "__main__":
    unittest.main()
