"""
Media source tests.

Browser-fed video and audio sources, the rolling audio buffer, landmark result
helpers, MediaPipe timestamps and the model download cache. No camera,
microphone or network needed.
"""

import sys
import os
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch, MagicMock

import numpy as np

from tests.fixtures.synthetic_signals import gray_frame, make_face, make_detection


class TestRollingAudioBuffer(unittest.TestCase):
    """Fixed-size newest-samples ring."""

    def test_keeps_newest_samples(self):
        """Pushes shift older samples out from the left."""
        from utils.audio_source_handler import RollingAudioBuffer
        buf = RollingAudioBuffer(size=4)
        buf.push([0.1, 0.2])
        buf.push([0.3, 0.4, 0.5])
        np.testing.assert_allclose(buf.snapshot(), [0.2, 0.3, 0.4, 0.5], rtol=1e-6)

    def test_clips_and_cleans(self):
        """Out-of-range values are clipped and NaN becomes 0."""
        from utils.audio_source_handler import RollingAudioBuffer
        buf = RollingAudioBuffer(size=3)
        buf.push([2.0, float("nan"), -3.0])
        np.testing.assert_allclose(buf.snapshot(), [1.0, 0.0, -1.0])


class TestAudioSourceHandler(unittest.TestCase):
    """Audio source selection."""

    def test_browser_source(self):
        """Browser audio arrives via push_browser_audio and is read back zero-padded."""
        from utils.audio_source_handler import AudioSourceHandler, AudioSourceType, push_browser_audio
        handler = AudioSourceHandler(buffer_size=2048)
        self.assertTrue(handler.initialize_source(AudioSourceType.BROWSER))
        self.assertEqual(push_browser_audio([0.5, -0.5, 0.5]), 3)
        data = handler.read_buffer()
        self.assertEqual(data.shape, (2048,))
        np.testing.assert_allclose(data[-3:], [0.5, -0.5, 0.5])
        handler.release()
        self.assertIsNone(handler.source_type)

    def test_no_source_reads_silence(self):
        """Without a source the buffer is silent."""
        from utils.audio_source_handler import AudioSourceHandler
        handler = AudioSourceHandler(buffer_size=512)
        self.assertFalse(handler.read_buffer().any())

    def test_microphone_failure(self):
        """A device error while opening the microphone returns False."""
        from utils.audio_source_handler import AudioSourceHandler, AudioSourceType
        fake_sd = MagicMock()
        fake_sd.InputStream.side_effect = OSError("no input device")
        with patch.dict(sys.modules, {"sounddevice": fake_sd}):
            handler = AudioSourceHandler()
            self.assertFalse(handler.initialize_source(AudioSourceType.MICROPHONE))
        self.assertIsNone(handler.source_type)


class TestVideoSourceHandler(unittest.TestCase):
    """Video source selection."""

    def tearDown(self):
        from utils.video_source_handler import set_browser_frame
        set_browser_frame(None)

    def test_browser_source(self):
        """The browser source serves the latest posted frame."""
        from utils.video_source_handler import VideoSourceHandler, VideoSourceType, set_browser_frame
        handler = VideoSourceHandler()
        self.assertTrue(handler.initialize_source(VideoSourceType.BROWSER))
        self.assertEqual(handler.read_frame(), (False, None))
        set_browser_frame(gray_frame(77, shape=(10, 20, 3)))
        ok, frame = handler.read_frame()
        self.assertTrue(ok)
        self.assertEqual(frame.shape, (10, 20, 3))
        handler.release()

    def test_stream_requires_path(self):
        """A stream without a URL fails to open."""
        from utils.video_source_handler import VideoSourceHandler, VideoSourceType
        handler = VideoSourceHandler()
        self.assertFalse(handler.initialize_source(VideoSourceType.STREAM))
        self.assertEqual(handler.read_frame(), (False, None))

    def test_wide_browser_frames_are_downscaled(self):
        """Frames wider than the limit are resized on arrival."""
        import cv2
        from utils.video_source_handler import set_browser_frame_from_bytes, get_browser_frame
        ok, buf = cv2.imencode(".png", gray_frame(60, shape=(100, 4000, 3)))
        self.assertTrue(ok)
        with patch("config.BROWSER_FRAME_MAX_WIDTH", 1000):
            self.assertTrue(set_browser_frame_from_bytes(buf.tobytes()))
        self.assertEqual(get_browser_frame().shape[:2], (25, 1000))


class TestLandmarkDetectionResult(unittest.TestCase):
    """Result helpers."""

    def test_primary_face_and_hands(self):
        """primary_face is the first face; has_hands needs a hand with landmarks."""
        from utils.landmark_detector_interface import LandmarkDetectionResult, HandLandmarks
        empty = LandmarkDetectionResult()
        self.assertIsNone(empty.primary_face)
        self.assertFalse(empty.has_hands)
        self.assertFalse(LandmarkDetectionResult(hands=[HandLandmarks(landmarks=np.zeros((0, 3)))]).has_hands)
        result = make_detection(make_face(blink=0.7), hands=1)
        self.assertTrue(result.has_hands)
        self.assertAlmostEqual(result.primary_face.blendshape("eyeBlinkLeft"), 0.7)
        self.assertEqual(result.primary_face.blendshape("jawOpen"), 0.0)


class TestMediaPipeTimestamps(unittest.TestCase):
    """VIDEO-mode timestamps across sessions."""

    def test_new_session_continues_after_last_timestamp(self):
        """After reset(), session time 0 maps just past the previous session's last frame."""
        from utils import mediapipe_landmarker
        with patch.object(mediapipe_landmarker, "mp_vision") as vision, \
                patch.object(mediapipe_landmarker, "mp_python"), \
                patch.object(mediapipe_landmarker, "mp"):
            detector = mediapipe_landmarker.MediaPipeLandmarkDetector(
                face_model_path="face.task", hand_model_path="hand.task"
            )
            frame = gray_frame(100, shape=(48, 64, 3))
            detector.detect(frame, 0)
            detector.detect(frame, 5000)
            detector.reset()
            detector.detect(frame, 0)
            detector.detect(frame, 33)
            face = vision.FaceLandmarker.create_from_options.return_value
            hand = vision.HandLandmarker.create_from_options.return_value
            sent = [c.args[1] for c in face.detect_for_video.call_args_list]
            self.assertEqual(sent, [0, 5000, 5001, 5034])
            self.assertEqual([c.args[1] for c in hand.detect_for_video.call_args_list], sent)

    def test_repeated_timestamp_is_bumped(self):
        """A repeated session timestamp still reaches the graphs strictly increasing."""
        from utils import mediapipe_landmarker
        with patch.object(mediapipe_landmarker, "mp_vision") as vision, \
                patch.object(mediapipe_landmarker, "mp_python"), \
                patch.object(mediapipe_landmarker, "mp"):
            detector = mediapipe_landmarker.MediaPipeLandmarkDetector(
                face_model_path="face.task", hand_model_path="hand.task"
            )
            frame = gray_frame(100, shape=(48, 64, 3))
            detector.detect(frame, 40)
            detector.detect(frame, 40)
            face = vision.FaceLandmarker.create_from_options.return_value
            self.assertEqual([c.args[1] for c in face.detect_for_video.call_args_list], [40, 41])


class TestModelDownload(unittest.TestCase):
    """Model bundle cache."""

    def test_downloads_once(self):
        """The bundle is fetched on first use and reused afterwards."""
        from utils.mediapipe_landmarker import ensure_model
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "models", "face.task")
            response = MagicMock(content=b"model-bytes")
            with patch("utils.mediapipe_landmarker.requests.get", return_value=response) as mock_get:
                self.assertEqual(ensure_model("https://example.invalid/face.task", path), path)
                ensure_model("https://example.invalid/face.task", path)
            self.assertEqual(mock_get.call_count, 1)
            with open(path, "rb") as f:
                self.assertEqual(f.read(), b"model-bytes")
            self.assertFalse(os.path.exists(path + ".part"))

    def test_http_error_propagates(self):
        """A failed download raises and leaves no file behind."""
        from utils.mediapipe_landmarker import ensure_model
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "hand.task")
            response = MagicMock()
            response.raise_for_status.side_effect = RuntimeError("404")
            with patch("utils.mediapipe_landmarker.requests.get", return_value=response):
                with self.assertRaises(RuntimeError):
                    ensure_model("https://example.invalid/hand.task", path)
            self.assertFalse(os.path.exists(path))


if __name__ == "__main__":
    unittest.main()
