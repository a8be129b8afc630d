"""Outbound delivery to chat channels."""

from __future__ import annotations

from .base import ChannelOutbound
from .logging_outbound import LoggingOutbound

__all__ = ["ChannelOutbound", "LoggingOutbound"]
