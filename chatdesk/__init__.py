"""Conversation orchestration core for multi-channel support agents."""

from .__version__ import __version__

__all__ = ["__version__"]
