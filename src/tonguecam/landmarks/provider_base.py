from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Sequence

from tonguecam.errors import InitializationError

logger = logging.getLogger(__name__)

Landmarks = Sequence[Any]


class ProviderStatus(str, Enum):
    not_initialized = "not_initialized"
    initializing = "initializing"
    ready = "ready"
    failed = "failed"
    closed = "closed"


class LandmarkProvider(ABC):
    """Interface for frame-level facial landmark extraction.

    Subclasses implement ``_load``, ``_detect`` and ``_release``; this base
    class owns the one-time initialization state machine.
    """

    def __init__(self) -> None:
        self._status = ProviderStatus.not_initialized
        self._error: Optional[InitializationError] = None
        self._init_lock = threading.Lock()

    @property
    def status(self) -> ProviderStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is ProviderStatus.ready

    def initialize(self) -> None:
        """Load the underlying model once.

        Concurrent callers wait on the same initialization; a failed provider
        re-raises its original error on every later call.
        """
        with self._init_lock:
            if self._status is ProviderStatus.ready:
                return
            if self._status is ProviderStatus.failed and self._error is not None:
                raise self._error
            if self._status is ProviderStatus.closed:
                raise InitializationError("Landmark provider has been closed")

            self._status = ProviderStatus.initializing
            try:
                self._load()
            except InitializationError as exc:
                self._fail(exc)
                raise
            except Exception as exc:
                error = InitializationError(f"{type(exc).__name__}: {exc}")
                self._fail(error)
                raise error from exc
            self._status = ProviderStatus.ready
            logger.info("Landmark provider ready: %s", type(self).__name__)

    def _fail(self, error: InitializationError) -> None:
        self._error = error
        self._status = ProviderStatus.failed
        logger.error("Landmark provider failed to initialize: %s", error)

    def detect_for_frame(self, frame: Any, timestamp_ms: int) -> Optional[Landmarks]:
        """Return normalized landmarks for the first face, or ``None``."""
        if self._status is not ProviderStatus.ready:
            raise InitializationError(
                f"Landmark provider is not ready (status: {self._status.value})"
            )
        try:
            return self._detect(frame, int(timestamp_ms))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Landmark detection failed at %d ms: %s", timestamp_ms, exc)
            return None

    def close(self) -> None:
        with self._init_lock:
            if self._status is ProviderStatus.closed:
                return
            try:
                if self._status is ProviderStatus.ready:
                    self._release()
            finally:
                self._status = ProviderStatus.closed

    def __enter__(self) -> "LandmarkProvider":
        self.initialize()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @abstractmethod
    def _load(self) -> None:
        """Create the underlying detector. Raise on failure."""

    @abstractmethod
    def _detect(self, frame: Any, timestamp_ms: int) -> Optional[Landmarks]:
        """Run detection on one RGB frame."""

    def _release(self) -> None:
        """Free model resources. Default: nothing to release."""
