# src/dagsmith/__init__.py
from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dagsmith")
except PackageNotFoundError:  # running from a source checkout
    __version__ = "0.0.0+local"

__all__ = ["__version__"]
