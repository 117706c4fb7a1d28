"""Command parsing, authorization and routing."""

from .auth import VERB_PERMISSIONS, AuthDirectory, TrustLevel
from .parsing import USAGE, Command, Destination, parse_command
from .router import CommandResponse, CommandRouter

__all__ = [
    "AuthDirectory",
    "Command",
    "CommandResponse",
    "CommandRouter",
    "Destination",
    "TrustLevel",
    "USAGE",
    "VERB_PERMISSIONS",
    "parse_command",
]
