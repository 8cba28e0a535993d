from __future__ import annotations

import logging
import sys
import time
from typing import Any, Callable, Iterator, Optional

import cv2

from tonguecam.errors import CameraPermissionError, FrameProcessingError
from tonguecam.io.video_reader import Frame

logger = logging.getLogger(__name__)

DEFAULT_FRAME_SIZE = (640, 480)


def _backend_candidates(index: int) -> list[tuple[int, int]]:
    if sys.platform == "darwin":
        return [(index, cv2.CAP_AVFOUNDATION), (index, cv2.CAP_ANY)]
    if sys.platform.startswith("win"):
        return [(index, cv2.CAP_DSHOW), (index, cv2.CAP_MSMF), (index, cv2.CAP_ANY)]
    return [(index, cv2.CAP_ANY)]


def open_camera(
    index: int = 0,
    *,
    frame_size: tuple[int, int] = DEFAULT_FRAME_SIZE,
    capture_factory: Callable[[int, int], Any] = cv2.VideoCapture,
) -> Any:
    """Open a camera device, trying platform backends in order."""
    for device, backend in _backend_candidates(index):
        cap = capture_factory(device, backend)
        if cap.isOpened():
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, frame_size[0])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, frame_size[1])
            logger.info("Opened camera %d (backend %d)", device, backend)
            return cap
        cap.release()
    raise CameraPermissionError(
        f"Camera {index} could not be opened. Close other apps using it or grant camera permission."
    )


class CameraSource:
    """Live camera frames as RGB ``Frame`` objects with monotonic timestamps."""

    def __init__(
        self,
        index: int = 0,
        *,
        mirror: bool = True,
        frame_size: tuple[int, int] = DEFAULT_FRAME_SIZE,
        capture_factory: Callable[[int, int], Any] = cv2.VideoCapture,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.index = index
        self.mirror = mirror
        self._frame_size = frame_size
        self._capture_factory = capture_factory
        self._clock = clock
        self._cap: Any = None
        self._started_at: Optional[float] = None
        self._frame_idx = 0

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self) -> "CameraSource":
        if self._cap is None:
            self._cap = open_camera(
                self.index,
                frame_size=self._frame_size,
                capture_factory=self._capture_factory,
            )
            self._started_at = self._clock()
            self._frame_idx = 0
        return self

    def read(self) -> Frame:
        if self._cap is None:
            raise FrameProcessingError("Camera is not open")
        ok, image_bgr = self._cap.read()
        if not ok or image_bgr is None:
            raise FrameProcessingError(f"Failed to read frame {self._frame_idx} from camera")
        if self.mirror:
            image_bgr = cv2.flip(image_bgr, 1)

        timestamp_ms = int(round((self._clock() - (self._started_at or 0.0)) * 1000))
        frame = Frame(
            idx=self._frame_idx,
            timestamp_ms=timestamp_ms,
            image_rgb=cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB),
        )
        self._frame_idx += 1
        return frame

    def __iter__(self) -> Iterator[Frame]:
        while self._cap is not None:
            yield self.read()

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Released camera %d", self.index)

    def __enter__(self) -> "CameraSource":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.release()
