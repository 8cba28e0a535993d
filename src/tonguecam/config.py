from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from tonguecam.runtime_paths import get_model_path


class DetectorParams(BaseModel):
    """Tunable heuristic constants for the tongue detector.

    The defaults are hand-tuned values; treat them as configuration rather
    than physical constants.
    """

    model_config = {"frozen": True}

    smoothing_alpha: float = Field(default=0.2, description="EMA weight of the new sample")
    decay_step: float = Field(default=0.1, ge=0.0, le=1.0, description="Score decay per no-face frame")
    ratio_epsilon: float = Field(default=0.0001, gt=0.0)

    min_open_ratio: float = Field(default=0.2, description="Open ratio required before sampling color")
    sample_size: int = Field(default=3, description="Side of the square pixel patch")

    dark_brightness: float = 35.0
    bright_brightness: float = 80.0
    strong_redness: float = 1.2
    neutral_redness: float = 1.05

    clear_open_ratio: float = 0.35
    clear_color: float = 0.8
    wide_open_ratio: float = 0.5
    wide_color: float = 0.4
    wide_score: float = Field(default=0.8, ge=0.0, le=1.0)

    on_threshold: float = 0.6
    off_threshold: float = 0.4

    @field_validator("smoothing_alpha")
    @classmethod
    def validate_alpha(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError(f"smoothing_alpha must be in (0, 1], got: {value}")
        return value

    @field_validator("sample_size")
    @classmethod
    def validate_sample_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"sample_size must be >= 1, got: {value}")
        return value

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "DetectorParams":
        if self.off_threshold >= self.on_threshold:
            raise ValueError(
                "off_threshold must be lower than on_threshold "
                f"(got off={self.off_threshold}, on={self.on_threshold})"
            )
        if self.dark_brightness >= self.bright_brightness:
            raise ValueError("dark_brightness must be lower than bright_brightness")
        if self.neutral_redness >= self.strong_redness:
            raise ValueError("neutral_redness must be lower than strong_redness")
        return self


class LiveConfig(BaseModel):
    camera_index: int = Field(default=0, description="OpenCV camera device index")
    model_path: Path = Field(default_factory=get_model_path, description="Face landmarker model")
    mirror: bool = Field(default=True, description="Mirror frames for a selfie view")
    preview: bool = Field(default=True, description="Show the annotated preview window")
    max_frames: Optional[int] = Field(default=None, description="Stop after this many frames")
    use_gpu_delegate: bool = False

    @field_validator("camera_index")
    @classmethod
    def validate_camera_index(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"camera_index must be >= 0, got: {value}")
        return value

    @field_validator("max_frames")
    @classmethod
    def validate_max_frames(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError(f"max_frames must be >= 1, got: {value}")
        return value

    def as_summary(self) -> dict[str, str]:
        return {
            "camera_index": str(self.camera_index),
            "model_path": str(self.model_path),
            "mirror": str(self.mirror),
            "preview": str(self.preview),
            "max_frames": "" if self.max_frames is None else str(self.max_frames),
        }
