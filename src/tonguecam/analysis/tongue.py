"""Per-frame tongue detection from face landmarks and a sampled pixel patch.

The detector fuses two signals:

* the mouth open ratio (inner-lip gap over mouth width), and
* a color class for a tiny patch sampled between the inner lips,

then smooths the fused score with an EMA and debounces the boolean decision
with a two-threshold hysteresis.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np

from tonguecam.config import DetectorParams
from tonguecam.errors import FrameProcessingError
from tonguecam.roi.indices import (
    LOWER_INNER_LIP,
    MIN_LANDMARK_COUNT,
    MOUTH_CORNERS,
    UPPER_INNER_LIP,
)

logger = logging.getLogger(__name__)

FaceLandmarks = Any


@dataclass(frozen=True)
class DebugInfo:
    mouth_open: float
    color_match: float


@dataclass(frozen=True)
class PredictionResult:
    is_tongue_out: bool
    is_person_detected: bool
    score: float
    landmarks: Optional[FaceLandmarks] = None
    debug: Optional[DebugInfo] = None


NO_DETECTION = PredictionResult(is_tongue_out=False, is_person_detected=False, score=0.0)


def _point(landmarks: FaceLandmarks, idx: int) -> tuple[float, float]:
    try:
        point = landmarks[idx]
        if hasattr(point, "x"):
            return float(point.x), float(point.y)
        return float(point[0]), float(point[1])
    except (IndexError, KeyError, TypeError, ValueError, AttributeError) as exc:
        raise FrameProcessingError(f"Landmark {idx} is unavailable") from exc


def _distance(a: tuple[float, float], b: tuple[float, float]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def _has_landmarks(landmarks: Optional[FaceLandmarks]) -> bool:
    if landmarks is None:
        return False
    count = len(landmarks)
    if count == 0:
        return False
    if count < MIN_LANDMARK_COUNT:
        raise FrameProcessingError(
            f"Expected at least {MIN_LANDMARK_COUNT} landmarks, got {count}"
        )
    return True


def mouth_open_ratio(landmarks: FaceLandmarks, epsilon: float = 0.0001) -> float:
    """Return inner-lip height divided by mouth-corner width."""
    height = _distance(_point(landmarks, UPPER_INNER_LIP), _point(landmarks, LOWER_INNER_LIP))
    width = _distance(_point(landmarks, MOUTH_CORNERS[0]), _point(landmarks, MOUTH_CORNERS[1]))
    return height / (width + epsilon)


def inner_lip_midpoint(landmarks: FaceLandmarks, width: int, height: int) -> tuple[float, float]:
    """Return the pixel-space midpoint between the inner-lip landmarks."""
    top = _point(landmarks, UPPER_INNER_LIP)
    bottom = _point(landmarks, LOWER_INNER_LIP)
    return (top[0] + bottom[0]) / 2 * width, (top[1] + bottom[1]) / 2 * height


def sample_patch_mean(
    image_rgb: np.ndarray,
    cx: float,
    cy: float,
    size: int = 3,
) -> tuple[float, float, float]:
    """Average R, G, B over a ``size`` x ``size`` patch centered on ``(cx, cy)``.

    The window is clamped so it stays inside the frame.
    """
    image = np.asarray(image_rgb)
    if image.ndim != 3 or image.shape[2] < 3:
        raise FrameProcessingError(f"Expected an (H, W, 3) RGB frame, got shape {image.shape}")

    height, width = image.shape[:2]
    x0 = int(math.floor(max(0.0, min(width - size, cx - size / 2))))
    y0 = int(math.floor(max(0.0, min(height - size, cy - size / 2))))
    patch = image[y0 : y0 + size, x0 : x0 + size, :3]
    if patch.size == 0:
        raise FrameProcessingError(f"Empty sample patch at ({cx:.1f}, {cy:.1f})")

    r, g, b = patch.reshape(-1, 3).astype(np.float64).mean(axis=0)
    return float(r), float(g), float(b)


def brightness_and_redness(r: float, g: float, b: float) -> tuple[float, float]:
    brightness = (r + g + b) / 3
    redness = r / (max(g, b) + 1)
    return brightness, redness


def classify_color(
    brightness: float,
    redness: float,
    params: DetectorParams | None = None,
) -> float:
    """Map patch brightness/redness to a tongue color score.

    Rules are evaluated in order: dark cavity, strong red, bright teeth,
    reddish lips, skin.
    """
    p = params or DetectorParams()
    if brightness < p.dark_brightness:
        return 0.0
    if redness > p.strong_redness:
        return 1.0
    if brightness > p.bright_brightness and redness < p.neutral_redness:
        return 0.0
    if redness > p.neutral_redness:
        return 0.5
    return 0.1


def fuse_scores(
    open_ratio: float,
    color_score: float,
    params: DetectorParams | None = None,
) -> float:
    p = params or DetectorParams()
    if open_ratio > p.clear_open_ratio and color_score > p.clear_color:
        return 1.0
    # Very wide open with weaker color, e.g. a shadowed tongue.
    if open_ratio > p.wide_open_ratio and color_score > p.wide_color:
        return p.wide_score
    return 0.0


def smooth_score(previous: float, instant: float, alpha: float = 0.2) -> float:
    value = instant * alpha + previous * (1 - alpha)
    return min(1.0, max(0.0, value))


def hysteresis_decision(
    score: float,
    was_on: bool,
    params: DetectorParams | None = None,
) -> bool:
    """Return the debounced decision for ``score`` given the previous state.

    An "off" detector turns on above ``on_threshold``; an "on" detector only
    turns off once the score drops to ``off_threshold`` or below.
    """
    p = params or DetectorParams()
    threshold = p.off_threshold if was_on else p.on_threshold
    return score > threshold


class TongueDetector:
    """Stateful tongue detector holding the smoothed score between frames."""

    def __init__(self, params: DetectorParams | None = None) -> None:
        self.params = params or DetectorParams()
        self._last_score = 0.0
        self._is_tongue_out = False

    @property
    def last_score(self) -> float:
        return self._last_score

    @property
    def is_tongue_out(self) -> bool:
        return self._is_tongue_out

    def reset(self, score: float = 0.0, is_tongue_out: bool = False) -> None:
        self._last_score = min(1.0, max(0.0, float(score)))
        self._is_tongue_out = bool(is_tongue_out)

    def detect(
        self,
        landmarks: Optional[FaceLandmarks],
        image_rgb: Optional[np.ndarray],
    ) -> PredictionResult:
        try:
            return self._detect(landmarks, image_rgb)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Frame processing failed: %s", exc, exc_info=True)
            return NO_DETECTION

    def _decay(self) -> PredictionResult:
        # Rounded so repeated 0.1 steps land exactly on 0.0.
        self._last_score = max(0.0, round(self._last_score - self.params.decay_step, 9))
        self._is_tongue_out = False
        return PredictionResult(
            is_tongue_out=False,
            is_person_detected=False,
            score=self._last_score,
        )

    def _color_score(self, landmarks: FaceLandmarks, image_rgb: Optional[np.ndarray]) -> float:
        if image_rgb is None:
            raise FrameProcessingError("Frame is required for color sampling")
        height, width = np.asarray(image_rgb).shape[:2]
        cx, cy = inner_lip_midpoint(landmarks, width, height)
        r, g, b = sample_patch_mean(image_rgb, cx, cy, size=self.params.sample_size)
        brightness, redness = brightness_and_redness(r, g, b)
        return classify_color(brightness, redness, self.params)

    def _detect(
        self,
        landmarks: Optional[FaceLandmarks],
        image_rgb: Optional[np.ndarray],
    ) -> PredictionResult:
        if not _has_landmarks(landmarks):
            return self._decay()

        p = self.params
        open_ratio = mouth_open_ratio(landmarks, epsilon=p.ratio_epsilon)
        color_score = 0.0
        if open_ratio > p.min_open_ratio:
            color_score = self._color_score(landmarks, image_rgb)

        instant = fuse_scores(open_ratio, color_score, p)

        # State is only committed once every fallible step has succeeded.
        self._last_score = smooth_score(self._last_score, instant, p.smoothing_alpha)
        self._is_tongue_out = hysteresis_decision(self._last_score, self._is_tongue_out, p)

        return PredictionResult(
            is_tongue_out=self._is_tongue_out,
            is_person_detected=True,
            score=self._last_score,
            landmarks=landmarks,
            debug=DebugInfo(mouth_open=open_ratio, color_match=color_score),
        )
