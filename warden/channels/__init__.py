"""Command channels: where commands come from and notifications go."""

from .base import BaseChannel
from .console import ConsoleChannel

__all__ = ["BaseChannel", "ConsoleChannel"]
