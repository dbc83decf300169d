"""Aggressive disk metadata cleaner for Linux servers."""

from .__version__ import __version__

__all__ = ["__version__"]
