from __future__ import annotations

import numpy as np

from tonguecam.analysis.tongue import DebugInfo, PredictionResult
from tonguecam.viz.overlay import COLOR_ACTIVE, RETICLE_SIZE, draw_overlay

from conftest import build_landmarks


def _blank() -> np.ndarray:
    return np.zeros((480, 640, 3), dtype=np.uint8)


def test_overlay_returns_annotated_copy() -> None:
    image = _blank()
    result = PredictionResult(is_tongue_out=False, is_person_detected=False, score=0.0)

    annotated = draw_overlay(image, result)

    assert annotated.shape == image.shape
    assert annotated is not image
    assert not image.any()
    assert annotated.any()


def test_overlay_draws_active_reticle_on_inner_lip_midpoint() -> None:
    result = PredictionResult(
        is_tongue_out=True,
        is_person_detected=True,
        score=0.7,
        landmarks=build_landmarks(0.45),
        debug=DebugInfo(mouth_open=0.45, color_match=1.0),
    )

    annotated = draw_overlay(_blank(), result)

    # Top-left corner of the reticle around (320, 288).
    corner = annotated[288 - RETICLE_SIZE, 320 - RETICLE_SIZE]
    assert tuple(corner) == COLOR_ACTIVE


def test_overlay_without_landmarks_skips_reticle() -> None:
    result = PredictionResult(is_tongue_out=False, is_person_detected=False, score=0.0)

    annotated = draw_overlay(_blank(), result)

    assert not annotated[270:300, 300:340].any()
