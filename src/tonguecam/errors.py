from __future__ import annotations


class TongueCamError(Exception):
    """Base class for tonguecam errors."""


class InitializationError(TongueCamError):
    """Landmark provider failed to load; terminal for the session."""


class CameraPermissionError(TongueCamError, PermissionError):
    """Camera access was denied or no device could be opened."""


class FrameProcessingError(TongueCamError):
    """A single frame could not be processed. Recovered locally."""


class SourceError(TongueCamError):
    """The frame source could not be opened or stopped delivering frames."""
