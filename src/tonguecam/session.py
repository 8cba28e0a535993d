"""Per-frame detection loop tying a frame source, a landmark provider and the detector."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from tonguecam.analysis.tongue import NO_DETECTION, PredictionResult, TongueDetector
from tonguecam.errors import (
    CameraPermissionError,
    InitializationError,
    SourceError,
    TongueCamError,
)
from tonguecam.io.video_reader import Frame
from tonguecam.landmarks.provider_base import LandmarkProvider

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def open(self) -> Any: ...

    def read(self) -> Optional[Frame]: ...

    def release(self) -> None: ...


class SessionStatus(str, Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    running = "running"
    stopped = "stopped"
    error = "error"
    permission_denied = "permission_denied"


SETTLED_STATUSES = {
    SessionStatus.ready,
    SessionStatus.running,
    SessionStatus.stopped,
    SessionStatus.error,
    SessionStatus.permission_denied,
}

ResultCallback = Callable[[Optional[Frame], PredictionResult], None]
StatusCallback = Callable[[SessionStatus], None]
TransitionCallback = Callable[[bool], None]


class DetectionSession:
    """Drive the tongue detector once per frame until stopped.

    ``run`` executes the loop on the calling thread; ``start`` runs it on a
    worker thread which then owns the detector exclusively. Results leave the
    loop only through the callbacks.
    """

    def __init__(
        self,
        provider: LandmarkProvider,
        source_factory: Callable[[], FrameSource],
        detector: TongueDetector | None = None,
        *,
        on_result: ResultCallback | None = None,
        on_status: StatusCallback | None = None,
        on_transition: TransitionCallback | None = None,
        max_frames: int | None = None,
        max_read_failures: int = 30,
        read_retry_delay: float = 0.01,
    ) -> None:
        if max_frames is not None and max_frames < 1:
            raise ValueError(f"max_frames must be >= 1, got: {max_frames}")
        if max_read_failures < 1:
            raise ValueError(f"max_read_failures must be >= 1, got: {max_read_failures}")
        if read_retry_delay < 0:
            raise ValueError(f"read_retry_delay must be >= 0, got: {read_retry_delay}")
        self.provider = provider
        self.detector = detector or TongueDetector()
        self._source_factory = source_factory
        self._on_result = on_result
        self._on_status = on_status
        self._on_transition = on_transition
        self._max_frames = max_frames
        self._max_read_failures = max_read_failures
        self._read_retry_delay = read_retry_delay

        self._status = SessionStatus.idle
        self._error: Optional[TongueCamError] = None
        self._source: Optional[FrameSource] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._settled = threading.Event()
        self._cleanup_lock = threading.Lock()
        self._running = False
        self._is_tongue_out = False
        self._read_failures = 0
        self.frames_processed = 0

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def error(self) -> Optional[TongueCamError]:
        return self._error

    def _set_status(self, status: SessionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        logger.debug("Session status -> %s", status.value)
        if status in SETTLED_STATUSES:
            self._settled.set()
        if self._on_status is not None:
            self._on_status(status)

    # ---- lifecycle ----
    def prepare(self) -> bool:
        """Initialize the provider and open the source. Return ``True`` when ready."""
        if self._status in (SessionStatus.ready, SessionStatus.running):
            return True
        if self._status is not SessionStatus.idle:
            return False

        self._set_status(SessionStatus.loading)
        try:
            self.provider.initialize()
        except InitializationError as exc:
            return self._abort(exc, SessionStatus.error)

        try:
            self._source = self._source_factory()
            self._source.open()
        except CameraPermissionError as exc:
            logger.error("Camera unavailable: %s", exc)
            return self._abort(exc, SessionStatus.permission_denied)
        except Exception as exc:  # noqa: BLE001
            logger.error("Frame source failed to open: %s", exc, exc_info=True)
            error = SourceError(f"Frame source failed to open: {type(exc).__name__}: {exc}")
            return self._abort(error, SessionStatus.error)

        self._set_status(SessionStatus.ready)
        return True

    def _abort(self, error: TongueCamError, status: SessionStatus) -> bool:
        self._error = error
        self._cleanup()
        self._set_status(status)
        return False

    def run(self) -> SessionStatus:
        """Run the loop on the current thread until stopped or the source ends."""
        if not self.prepare():
            return self._status

        self._running = True
        self._set_status(SessionStatus.running)
        try:
            while not self._stop_event.is_set():
                if self._max_frames is not None and self.frames_processed >= self._max_frames:
                    break
                if not self._tick():
                    break
        finally:
            self._running = False
            self._cleanup()
            final = SessionStatus.stopped if self._error is None else SessionStatus.error
            self._set_status(final)
        return self._status

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self.run, name="tonguecam-session", daemon=True)
        self._thread.start()

    def wait_ready(self, timeout: float | None = None) -> SessionStatus:
        """Block until initialization has either succeeded or failed."""
        self._settled.wait(timeout)
        return self._status

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def stop(self, timeout: float | None = 2.0) -> None:
        """Stop the loop and release camera and model resources. Idempotent."""
        self._stop_event.set()
        self.join(timeout)
        if not self._running:
            self._cleanup()
            if self._status in (SessionStatus.idle, SessionStatus.ready):
                self._set_status(SessionStatus.stopped)

    def __enter__(self) -> "DetectionSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    # ---- per-frame ----
    def _tick(self) -> bool:
        try:
            frame = self._source.read() if self._source is not None else None
        except TongueCamError as exc:
            return self._read_failed(exc)
        if frame is None:
            return False
        self._read_failures = 0

        try:
            landmarks = self.provider.detect_for_frame(frame.image_rgb, frame.timestamp_ms)
            result = self.detector.detect(landmarks, frame.image_rgb)
        except TongueCamError as exc:
            logger.warning("Frame %d skipped: %s", frame.idx, exc)
            result = NO_DETECTION
        self._emit(frame, result)
        return True

    def _read_failed(self, exc: TongueCamError) -> bool:
        self._read_failures += 1
        log = logger.warning if self._read_failures == 1 else logger.debug
        log("Frame read failed (%d in a row): %s", self._read_failures, exc)
        self._emit(None, NO_DETECTION)

        if self._read_failures >= self._max_read_failures:
            self._error = SourceError(
                f"Frame source failed {self._read_failures} times in a row: {exc}"
            )
            logger.error("%s", self._error)
            return False
        # Back off before retrying; stop() interrupts the wait.
        self._stop_event.wait(self._read_retry_delay)
        return True

    def _emit(self, frame: Optional[Frame], result: PredictionResult) -> None:
        self.frames_processed += 1
        if self._on_result is not None:
            self._on_result(frame, result)
        if result.is_tongue_out != self._is_tongue_out:
            self._is_tongue_out = result.is_tongue_out
            if self._on_transition is not None:
                self._on_transition(result.is_tongue_out)

    def _cleanup(self) -> None:
        with self._cleanup_lock:
            if self._source is not None:
                try:
                    self._source.release()
                finally:
                    self._source = None
            self.provider.close()
