from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import numpy as np

from tonguecam.errors import InitializationError
from tonguecam.landmarks.provider_base import LandmarkProvider
from tonguecam.roi.indices import MIN_LANDMARK_COUNT
from tonguecam.runtime_paths import get_model_path

OFFICIAL_FACE_LANDMARKER_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)


def _build_missing_model_message(model_path: Path) -> str:
    return (
        f"Model file not found: {model_path}\n"
        f"Official model URL: {OFFICIAL_FACE_LANDMARKER_MODEL_URL}\n"
        "Download example:\n"
        f'mkdir -p "{model_path.parent}"\n'
        f'curl -L -o "{model_path}" "{OFFICIAL_FACE_LANDMARKER_MODEL_URL}"'
    )


def _require_model_file(model_path: str | Path) -> Path:
    resolved = Path(model_path)
    if not resolved.exists() or not resolved.is_file():
        raise InitializationError(_build_missing_model_message(resolved))
    return resolved


def _import_mediapipe() -> Any:
    try:
        import mediapipe as mp  # type: ignore
    except ImportError as exc:
        raise InitializationError(
            "mediapipe is required for landmark extraction. Install with: pip install mediapipe"
        ) from exc
    return mp


def landmarks_to_array(face_landmarks: Any) -> np.ndarray:
    """Convert one face of MediaPipe ``NormalizedLandmark`` objects to ``(N, 3)``."""
    points = np.asarray(
        [[landmark.x, landmark.y, landmark.z] for landmark in face_landmarks],
        dtype=np.float32,
    )
    if points.shape[0] < MIN_LANDMARK_COUNT:
        raise ValueError(
            f"Expected at least {MIN_LANDMARK_COUNT} landmarks, got {points.shape[0]}"
        )
    return points


class MediaPipeFaceLandmarker(LandmarkProvider):
    """MediaPipe Face Landmarker in VIDEO running mode, tracking one face."""

    def __init__(
        self,
        model_path: str | Path | None = None,
        *,
        use_gpu_delegate: bool = False,
        min_detection_confidence: float = 0.5,
        min_presence_confidence: float = 0.5,
    ) -> None:
        super().__init__()
        self.model_path = Path(model_path) if model_path is not None else get_model_path()
        self.use_gpu_delegate = use_gpu_delegate
        self.min_detection_confidence = min_detection_confidence
        self.min_presence_confidence = min_presence_confidence
        self._mp: Any = None
        self._landmarker: Any = None
        self._last_timestamp_ms: Optional[int] = None

    def _load(self) -> None:
        model_file = _require_model_file(self.model_path)
        mp = _import_mediapipe()

        base_options_kwargs: dict[str, Any] = {"model_asset_path": str(model_file)}
        if self.use_gpu_delegate:
            base_options_kwargs["delegate"] = mp.tasks.BaseOptions.Delegate.GPU
        base_options = mp.tasks.BaseOptions(**base_options_kwargs)
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self.min_detection_confidence,
            min_face_presence_confidence=self.min_presence_confidence,
        )
        self._landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
        self._mp = mp

    def _next_timestamp(self, timestamp_ms: int) -> int:
        # The VIDEO running mode rejects non-increasing timestamps.
        if self._last_timestamp_ms is not None and timestamp_ms <= self._last_timestamp_ms:
            timestamp_ms = self._last_timestamp_ms + 1
        self._last_timestamp_ms = timestamp_ms
        return timestamp_ms

    def _detect(self, frame: Any, timestamp_ms: int) -> Optional[np.ndarray]:
        mp = self._mp
        mp_image = mp.Image(
            image_format=mp.ImageFormat.SRGB,
            data=np.ascontiguousarray(frame),
        )
        result = self._landmarker.detect_for_video(mp_image, self._next_timestamp(timestamp_ms))
        if not result.face_landmarks:
            return None
        return landmarks_to_array(result.face_landmarks[0])

    def _release(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
