from __future__ import annotations

import threading
import time
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from tonguecam.errors import InitializationError
from tonguecam.landmarks.mediapipe_face_landmarker import (
    OFFICIAL_FACE_LANDMARKER_MODEL_URL,
    MediaPipeFaceLandmarker,
    landmarks_to_array,
)
from tonguecam.landmarks.provider_base import LandmarkProvider, ProviderStatus


class SlowProvider(LandmarkProvider):
    def __init__(self, *, fail: bool = False, delay: float = 0.05) -> None:
        super().__init__()
        self.fail = fail
        self.delay = delay
        self.load_calls = 0
        self.release_calls = 0

    def _load(self) -> None:
        self.load_calls += 1
        time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("model download failed")

    def _detect(self, frame, timestamp_ms):
        if timestamp_ms < 0:
            raise RuntimeError("bad timestamp")
        return np.zeros((478, 3), dtype=np.float32)

    def _release(self) -> None:
        self.release_calls += 1


def test_initialize_is_idempotent_across_threads() -> None:
    provider = SlowProvider()
    threads = [threading.Thread(target=provider.initialize) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert provider.load_calls == 1
    assert provider.status is ProviderStatus.ready
    provider.initialize()
    assert provider.load_calls == 1


def test_initialize_failure_is_terminal() -> None:
    provider = SlowProvider(fail=True, delay=0.0)

    with pytest.raises(InitializationError) as first:
        provider.initialize()
    assert "model download failed" in str(first.value)
    assert isinstance(first.value.__cause__, RuntimeError)
    assert provider.status is ProviderStatus.failed

    with pytest.raises(InitializationError) as second:
        provider.initialize()
    assert second.value is first.value
    assert provider.load_calls == 1


def test_detect_before_initialize_raises() -> None:
    provider = SlowProvider()
    with pytest.raises(InitializationError):
        provider.detect_for_frame(np.zeros((4, 4, 3), dtype=np.uint8), 0)


def test_detect_errors_become_no_face() -> None:
    provider = SlowProvider(delay=0.0)
    provider.initialize()

    assert provider.detect_for_frame(None, 10) is not None
    assert provider.detect_for_frame(None, -1) is None


def test_close_releases_once_and_blocks_reinitialization() -> None:
    provider = SlowProvider(delay=0.0)
    with provider:
        assert provider.is_ready
    provider.close()

    assert provider.release_calls == 1
    assert provider.status is ProviderStatus.closed
    with pytest.raises(InitializationError):
        provider.initialize()


def test_mediapipe_provider_reports_missing_model(tmp_path: Path) -> None:
    provider = MediaPipeFaceLandmarker(tmp_path / "missing.task")

    with pytest.raises(InitializationError) as exc_info:
        provider.initialize()

    message = str(exc_info.value)
    assert "Model file not found" in message
    assert OFFICIAL_FACE_LANDMARKER_MODEL_URL in message
    assert provider.status is ProviderStatus.failed


def test_mediapipe_provider_bumps_non_increasing_timestamps(tmp_path: Path) -> None:
    provider = MediaPipeFaceLandmarker(tmp_path / "unused.task")

    assert provider._next_timestamp(100) == 100
    assert provider._next_timestamp(100) == 101
    assert provider._next_timestamp(50) == 102
    assert provider._next_timestamp(500) == 500


def test_landmarks_to_array_shape() -> None:
    face = [SimpleNamespace(x=0.1 * (i % 10), y=0.5, z=0.0) for i in range(478)]

    points = landmarks_to_array(face)

    assert points.shape == (478, 3)
    assert points.dtype == np.float32
    assert points[3, 0] == pytest.approx(0.3)


def test_landmarks_to_array_rejects_short_mesh() -> None:
    face = [SimpleNamespace(x=0.0, y=0.0, z=0.0) for _ in range(100)]
    with pytest.raises(ValueError):
        landmarks_to_array(face)
