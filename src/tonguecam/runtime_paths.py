"""Portable path resolution for both dev and PyInstaller-frozen environments.

Model lookups go through the helpers in this module so that the live camera
app still finds ``models/face_landmarker.task`` when bundled as an exe.
"""

from __future__ import annotations

import sys
from pathlib import Path


def is_frozen() -> bool:
    """Return ``True`` when running inside a PyInstaller bundle."""
    return getattr(sys, "frozen", False) is True


def get_base_dir() -> Path:
    """Return the base directory used for resolving relative paths.

    * **Frozen (PyInstaller)**: the directory containing the exe.
    * **Development**: the project root (``src/tonguecam/`` -> project root).
    """
    if is_frozen():
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent.parent


def get_model_path(relative: str = "models/face_landmarker.task") -> Path:
    """Return the absolute path to a model file relative to *base_dir*."""
    return get_base_dir() / relative
