"""pr-relay: Pull request activity relay with post-merge fork setup."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pr-relay")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
