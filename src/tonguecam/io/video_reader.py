from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

import cv2
import numpy as np

from tonguecam.errors import FrameProcessingError

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv", ".m4v", ".webm"}


@dataclass(frozen=True)
class VideoInfo:
    path: Path
    fps: float
    frame_count: int
    width: int
    height: int

    @property
    def duration_ms(self) -> int:
        return round(self.frame_count * 1000 / self.fps)

    def timestamp_ms(self, frame_idx: int) -> int:
        return round(frame_idx * 1000 / self.fps)


@dataclass(frozen=True)
class Frame:
    """One RGB frame handed to the detector."""

    idx: int
    timestamp_ms: int
    image_rgb: np.ndarray

    @property
    def width(self) -> int:
        return int(self.image_rgb.shape[1])

    @property
    def height(self) -> int:
        return int(self.image_rgb.shape[0])


def _check_video_path(path: str | Path) -> Path:
    video_path = Path(path)
    if not video_path.is_file():
        if video_path.exists():
            raise ValueError(f"Video path is not a file: {video_path}")
        raise FileNotFoundError(f"Video file does not exist: {video_path}")
    if video_path.suffix.lower() not in VIDEO_EXTENSIONS:
        allowed = ", ".join(sorted(VIDEO_EXTENSIONS))
        raise ValueError(f"Unsupported video extension '{video_path.suffix}'. Supported: {allowed}")
    return video_path


def _open_capture(video_path: Path) -> Any:
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        cap.release()
        raise RuntimeError(f"Failed to open video file with OpenCV: {video_path}")
    return cap


def probe_video(path: str | Path) -> VideoInfo:
    """Read fps, frame count and frame size of a clip without decoding it."""
    video_path = _check_video_path(path)
    cap = _open_capture(video_path)
    try:
        info = VideoInfo(
            path=video_path,
            fps=float(cap.get(cv2.CAP_PROP_FPS)),
            frame_count=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
    finally:
        cap.release()

    if info.fps <= 0:
        raise RuntimeError(f"Invalid FPS from video metadata: {video_path}")
    if info.width <= 0 or info.height <= 0:
        raise RuntimeError(f"Invalid frame size from video metadata: {video_path}")
    if info.frame_count < 0:
        raise RuntimeError(f"Invalid frame count from video metadata: {video_path}")
    return info


class VideoFileSource:
    """A recorded clip as a detection frame source.

    Every ``stride``-th frame in ``[start_frame, end_frame)`` is returned by
    ``read`` with a timestamp derived from the clip's fps; ``read`` returns
    ``None`` once the range or the file is exhausted.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        stride: int = 1,
        start_frame: int = 0,
        end_frame: int | None = None,
    ) -> None:
        if stride < 1:
            raise ValueError(f"stride must be >= 1, got: {stride}")
        if start_frame < 0:
            raise ValueError(f"start_frame must be >= 0, got: {start_frame}")
        if end_frame is not None and end_frame < start_frame:
            raise ValueError("end_frame must be greater than or equal to start_frame")
        self.path = Path(path)
        self.stride = stride
        self.start_frame = start_frame
        self.end_frame = end_frame
        self.info: Optional[VideoInfo] = None
        self._cap: Any = None
        self._next_idx = start_frame

    def open(self) -> "VideoFileSource":
        if self._cap is None:
            self.info = probe_video(self.path)
            self._cap = _open_capture(self.info.path)
            if self.start_frame > 0:
                self._cap.set(cv2.CAP_PROP_POS_FRAMES, self.start_frame)
            self._next_idx = self.start_frame
            logger.debug("Opened %s at %.2f fps", self.info.path.name, self.info.fps)
        return self

    def read(self) -> Optional[Frame]:
        if self._cap is None or self.info is None:
            raise FrameProcessingError(f"Video source is not open: {self.path}")
        while self.end_frame is None or self._next_idx < self.end_frame:
            ok, image_bgr = self._cap.read()
            if not ok:
                return None
            idx = self._next_idx
            self._next_idx += 1
            if (idx - self.start_frame) % self.stride:
                continue
            return Frame(
                idx=idx,
                timestamp_ms=self.info.timestamp_ms(idx),
                image_rgb=cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB),
            )
        return None

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __iter__(self) -> Iterator[Frame]:
        frame = self.read()
        while frame is not None:
            yield frame
            frame = self.read()

    def __enter__(self) -> "VideoFileSource":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


def iter_frames(
    path: str | Path,
    *,
    stride: int = 1,
    start_frame: int = 0,
    end_frame: int | None = None,
) -> Iterator[Frame]:
    """Yield RGB frames of a video file with fps-derived timestamps."""
    source = VideoFileSource(path, stride=stride, start_frame=start_frame, end_frame=end_frame)
    with source:
        yield from source
