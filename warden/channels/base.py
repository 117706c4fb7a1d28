"""
Base class for all command channel integrations.
Channels receive command text from users on some front-end (console, game
chat, a chat relay), forward it to the command router, and double as the
notification sink agents report status through.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from warden.commands.auth import AuthDirectory
from warden.commands.parsing import is_command
from warden.commands.router import CommandRouter
from warden.drivers.base import NotificationSink

logger = logging.getLogger("OpenWarden.Channels")

# Default rate limit: 10 commands per 60 seconds per sender
_DEFAULT_RATE_LIMIT = 10
_DEFAULT_RATE_WINDOW = 60.0


class BaseChannel(NotificationSink, ABC):
    """Abstract base class for command channels."""

    name: str = "base"

    def __init__(
        self,
        config: Optional[dict] = None,
        router: Optional[CommandRouter] = None,
        auth: Optional[AuthDirectory] = None,
    ):
        """
        Args:
            config: Channel config. Accepts ``rate_limit`` as a mapping with
                    ``max_messages`` (default 10) and ``window_seconds``
                    (default 60) for per-sender throttling.
            router: Router commands are forwarded to; may be attached later.
            auth:   Trust lookup for senders (defaults to the router's).
        """
        self.config = config or {}
        self.router = router
        self._auth = auth
        self.logger = logging.getLogger(f"OpenWarden.Channel.{self.name}")

        rate_cfg = (
            self.config.get("rate_limit", {})
            if isinstance(self.config.get("rate_limit"), dict)
            else {}
        )
        self._rate_limit: int = rate_cfg.get("max_messages", _DEFAULT_RATE_LIMIT)
        self._rate_window: float = rate_cfg.get("window_seconds", _DEFAULT_RATE_WINDOW)
        self._rate_timestamps: Dict[str, Deque[float]] = defaultdict(deque)

    def attach(self, router: CommandRouter) -> None:
        self.router = router

    @property
    def auth(self) -> Optional[AuthDirectory]:
        if self._auth is not None:
            return self._auth
        return self.router.auth if self.router is not None else None

    def _check_rate_limit(self, sender_id: str) -> bool:
        """Return True if the command is within the rate limit, False if throttled."""
        now = time.monotonic()
        window_start = now - self._rate_window
        q = self._rate_timestamps[sender_id]

        # Evict timestamps outside the window
        while q and q[0] < window_start:
            q.popleft()

        if len(q) >= self._rate_limit:
            return False

        q.append(now)
        return True

    async def on_incoming_command(self, text: str, sender_id: str) -> Optional[List[str]]:
        """
        Process one inbound message and send the reply back to the sender.

        Messages without the command marker are ordinary chat and are
        ignored (returns ``None``).
        """
        if self.router is None:
            raise RuntimeError(f"Channel '{self.name}' has no router attached")
        if not is_command(text, self.router.marker):
            return None

        self.logger.info(f"[{self.name}] Command from {sender_id}: {text[:80]}")
        if not self._check_rate_limit(sender_id):
            self.logger.warning(
                f"[{self.name}] Rate limit exceeded for {sender_id} "
                f"({self._rate_limit} msg/{self._rate_window}s)"
            )
            lines = [
                f"Too many requests. Please wait before sending another command "
                f"(limit: {self._rate_limit} per {int(self._rate_window)}s)."
            ]
        else:
            level = self.auth.level_for(sender_id)
            response = await self.router.handle(text, sender_id, level)
            lines = response.lines()

        await self.send_message(sender_id, lines)
        return lines

    def deliver(self, agent_id: str, message: str) -> None:
        """Notification sink entry point; fire-and-forget."""
        try:
            self.post_notification(agent_id, message)
        except Exception as e:
            self.logger.error(f"Notification from {agent_id} dropped: {e}")

    @abstractmethod
    async def start(self):
        """Begin receiving commands."""
        pass

    @abstractmethod
    async def stop(self):
        """Stop receiving commands."""
        pass

    @abstractmethod
    async def send_message(self, sender_id: str, lines: List[str]):
        """Send reply lines to a specific sender."""
        pass

    @abstractmethod
    def post_notification(self, agent_id: str, message: str):
        """Publish an agent status line to everyone listening."""
        pass
