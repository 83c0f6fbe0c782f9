"""Render extended-Markdown books into addressable HTML."""

from .version import __version__

__all__ = ["__version__"]
