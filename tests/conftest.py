from __future__ import annotations

from pathlib import Path
from typing import Callable

import cv2
import numpy as np
import pytest

FRAME_WIDTH = 640
FRAME_HEIGHT = 480
MOUTH_CENTER = (0.5, 0.6)
MOUTH_WIDTH = 0.2

TONGUE_RGB = (200, 60, 70)
TEETH_RGB = (220, 220, 220)
THROAT_RGB = (20, 10, 10)
LIP_RGB = (120, 108, 100)


def build_landmarks(open_ratio: float) -> np.ndarray:
    """478 normalized points with a mouth opened to ``open_ratio``."""
    points = np.full((478, 3), 0.5, dtype=np.float32)
    cx, cy = MOUTH_CENTER
    half_gap = open_ratio * (MOUTH_WIDTH + 0.0001) / 2
    points[13] = (cx, cy - half_gap, 0.0)
    points[14] = (cx, cy + half_gap, 0.0)
    points[61] = (cx - MOUTH_WIDTH / 2, cy, 0.0)
    points[291] = (cx + MOUTH_WIDTH / 2, cy, 0.0)
    return points


def build_frame(rgb: tuple[int, int, int]) -> np.ndarray:
    frame = np.zeros((FRAME_HEIGHT, FRAME_WIDTH, 3), dtype=np.uint8)
    frame[:, :] = rgb
    return frame


@pytest.fixture
def landmarks_factory() -> Callable[[float], np.ndarray]:
    return build_landmarks


@pytest.fixture
def frame_factory() -> Callable[[tuple[int, int, int]], np.ndarray]:
    return build_frame


@pytest.fixture
def tongue_frame() -> np.ndarray:
    return build_frame(TONGUE_RGB)


def _write_dummy_video(
    path: Path,
    *,
    codec: str,
    fps: float,
    width: int,
    height: int,
    frame_count: int,
) -> bool:
    fourcc = cv2.VideoWriter_fourcc(*codec)
    writer = cv2.VideoWriter(str(path), fourcc, fps, (width, height))
    if not writer.isOpened():
        return False

    try:
        for idx in range(frame_count):
            frame_bgr = np.zeros((height, width, 3), dtype=np.uint8)
            frame_bgr[:, :, 0] = (idx * 25) % 255
            frame_bgr[:, :, 1] = (idx * 50) % 255
            frame_bgr[:, :, 2] = (idx * 75) % 255
            writer.write(frame_bgr)
    finally:
        writer.release()

    return path.exists() and path.stat().st_size > 0


def make_dummy_video(tmp_path: Path, frame_count: int = 6) -> Path:
    for name, codec in (("dummy.mp4", "mp4v"), ("dummy.avi", "MJPG")):
        video_path = tmp_path / name
        if _write_dummy_video(
            video_path,
            codec=codec,
            fps=10.0,
            width=64,
            height=48,
            frame_count=frame_count,
        ):
            return video_path
    pytest.skip("No available OpenCV writer codec for test video generation")
