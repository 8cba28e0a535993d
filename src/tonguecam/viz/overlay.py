from __future__ import annotations

import cv2
import numpy as np

from tonguecam.analysis.tongue import PredictionResult, inner_lip_midpoint
from tonguecam.roi.indices import INNER_LIP

# RGB colors
COLOR_TEXT = (255, 255, 255)
COLOR_ACTIVE = (204, 255, 0)
COLOR_IDLE = (0, 180, 180)
COLOR_TRACKING = (180, 120, 255)

RETICLE_SIZE = 10


def _reticle_segments(cx: int, cy: int, size: int) -> list[tuple[tuple[int, int], tuple[int, int]]]:
    half = size // 2
    segments = []
    for sx, sy in ((-1, -1), (1, -1), (1, 1), (-1, 1)):
        corner = (cx + sx * size, cy + sy * size)
        segments.append((corner, (cx + sx * half, cy + sy * size)))
        segments.append((corner, (cx + sx * size, cy + sy * half)))
    return segments


def _inner_lip_polygon(landmarks: object, width: int, height: int) -> np.ndarray:
    if isinstance(landmarks, np.ndarray):
        points = landmarks[INNER_LIP, :2].astype(np.float32)
    else:
        points = np.asarray(
            [[landmarks[i].x, landmarks[i].y] for i in INNER_LIP],
            dtype=np.float32,
        )
    scaled = points * np.asarray([width, height], dtype=np.float32)
    return np.ascontiguousarray(scaled.round().astype(np.int32))


def draw_overlay(image_rgb: np.ndarray, result: PredictionResult) -> np.ndarray:
    """Return a copy of ``image_rgb`` with the detection HUD drawn on it."""
    canvas = np.ascontiguousarray(image_rgb).copy()
    height, width = canvas.shape[:2]

    status = "SYS: RECORDING" if result.is_tongue_out else "SYS: READY"
    cv2.putText(canvas, status, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, COLOR_TEXT, 1, cv2.LINE_AA)

    if result.is_person_detected:
        cv2.putText(
            canvas,
            "[ TRACKING ]",
            (max(0, width - 120), 20),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.45,
            COLOR_TRACKING,
            1,
            cv2.LINE_AA,
        )

    if result.debug is not None:
        telemetry = (
            f"mouth {result.debug.mouth_open:.2f}  "
            f"color {result.debug.color_match:.1f}  "
            f"score {result.score:.2f}"
        )
        cv2.putText(
            canvas,
            telemetry,
            (10, height - 10),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.45,
            COLOR_TEXT,
            1,
            cv2.LINE_AA,
        )

    if result.landmarks is None:
        return canvas

    color = COLOR_ACTIVE if result.is_tongue_out else COLOR_IDLE
    thickness = 2 if result.is_tongue_out else 1

    cv2.polylines(canvas, [_inner_lip_polygon(result.landmarks, width, height)], True, color, 1)

    mx, my = inner_lip_midpoint(result.landmarks, width, height)
    cx, cy = int(round(mx)), int(round(my))
    for start, end in _reticle_segments(cx, cy, RETICLE_SIZE):
        cv2.line(canvas, start, end, color, thickness)

    if result.is_tongue_out:
        cv2.putText(
            canvas,
            "FOCUS",
            (cx + 15, cy),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.4,
            COLOR_ACTIVE,
            1,
            cv2.LINE_AA,
        )
    return canvas
