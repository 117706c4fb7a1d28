"""
Console channel -- drive a fleet from the terminal.

Reads one command per line from stdin as the configured operator and
prints replies and agent notifications with ``rich``. ``quit`` or EOF
ends the session.
"""

import asyncio
from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape

from warden.channels.base import BaseChannel

_EXIT_WORDS = ("quit", "exit")


class ConsoleChannel(BaseChannel):
    """Interactive stdin/stdout channel."""

    name = "console"

    def __init__(
        self,
        config: Optional[dict] = None,
        router=None,
        auth=None,
        operator_id: str = "console",
        console: Optional[Console] = None,
        read_line: Optional[Callable[[], str]] = None,
    ):
        super().__init__(config, router, auth)
        self.operator_id = operator_id
        self.console = console or Console()
        self._read_line = read_line or input
        self._running = False

    async def start(self):
        """Read and dispatch commands until EOF, ``quit`` or :meth:`stop`."""
        self._running = True
        self.console.print(
            f"[bold cyan]OpenWarden console[/] -- commands start with "
            f"'{self.router.marker}', 'quit' to exit"
        )
        while self._running:
            try:
                line = await asyncio.to_thread(self._read_line)
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.lower() in _EXIT_WORDS:
                break
            lines = await self.on_incoming_command(line, self.operator_id)
            if lines is None:
                self.console.print(f"[dim]Not a command (prefix with '{self.router.marker}')[/]")
        self._running = False

    async def stop(self):
        self._running = False

    async def send_message(self, sender_id: str, lines: List[str]):
        for line in lines:
            style = "red" if line.startswith("Error:") else "white"
            self.console.print(f"[{style}]{escape(line)}[/]", highlight=False)

    def post_notification(self, agent_id: str, message: str):
        self.console.print(f"[dim]\\[{escape(agent_id)}][/] {escape(message)}", highlight=False)
