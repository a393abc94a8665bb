"""Distribution metadata read from the installed ``swflow`` package."""

from __future__ import annotations

import importlib.metadata

__all__ = ("__project__", "__version__")

_metadata = importlib.metadata.metadata("swflow")

__version__: str = _metadata["Version"]
"""Installed version of swflow."""
__project__: str = _metadata["Name"]
"""Distribution name."""
