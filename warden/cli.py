"""
OpenWarden CLI entry point.

Usage:
    warden run      --config fleet.yaml        # Run a simulated fleet, commands from stdin
    warden status   --config fleet.yaml        # Table of configured agents
    warden validate --config fleet.yaml        # Check a fleet config
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from warden import __version__
from warden.config import load_config, validate_config
from warden.errors import WardenError
from warden.logs import configure_logging

console = Console()

# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _load(args) -> dict:
    config = load_config(args.config)
    log_cfg = config.get("logging") or {}
    configure_logging(args.log_level or log_cfg.get("level"), log_cfg.get("file"))
    return config


def cmd_run(args) -> int:
    """Run a simulated fleet and read commands from the terminal."""
    from warden.channels.console import ConsoleChannel
    from warden.commands.router import CommandRouter
    from warden.fleet import build_simulated_fleet
    from warden.persistence import MemoryPersistence

    config = _load(args)
    ok, errors = validate_config(config)
    if not ok:
        _print_errors(errors)
        return 1

    operator = args.operator or config["system"].get("console_operator", "console")
    channel = ConsoleChannel(config.get("channels", {}).get("console", {}), operator_id=operator,
                             console=console)
    persistence = MemoryPersistence() if args.no_persist else None
    fleet, _world = build_simulated_fleet(config, sink=channel, persistence=persistence)
    # The terminal operator owns the fleet unless auth.users says otherwise
    configured = {str(u).lower() for u in (config["auth"].get("users") or {})}
    if operator.lower() not in configured:
        fleet.auth.set_level(operator, "owner")
    router = CommandRouter(fleet)
    channel.attach(router)

    async def _session() -> None:
        async with fleet:
            console.print(fleet.status_table())
            await channel.start()

    asyncio.run(_session())
    return 0


def cmd_status(args) -> int:
    """Show the configured fleet without starting it."""
    from warden.fleet import build_simulated_fleet
    from warden.persistence import MemoryPersistence

    config = _load(args)
    fleet, world = build_simulated_fleet(config, persistence=MemoryPersistence())
    console.print(f"\n[bold cyan]  OpenWarden {__version__}[/]")
    if not len(fleet):
        console.print("  [dim]No agents configured. Add entries under 'agents:'.[/]\n")
        return 0
    console.print(fleet.status_table())
    if world.entities:
        table = Table(title="World entities", show_header=True)
        table.add_column("Id", style="bold")
        table.add_column("Name")
        table.add_column("Kind")
        table.add_column("Position", style="dim")
        for entity in world.entities.values():
            table.add_row(entity.id, entity.display_name, entity.kind, str(entity.position))
        console.print(table)
    return 0


def cmd_validate(args) -> int:
    """Validate a fleet config file."""
    config = _load(args)
    ok, errors = validate_config(config)
    if ok:
        console.print(f"[green]+[/] {args.config}: valid ({len(config['agents'])} agent(s))")
        return 0
    _print_errors(errors)
    return 1


def _print_errors(errors: List[str]) -> None:
    console.print(f"[red]Config has {len(errors)} problem(s):[/]")
    for msg in errors:
        console.print(f"  [red]-[/] {msg}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warden",
        description="OpenWarden - behavior engine for autonomous agent fleets",
        epilog=(
            "Quick start:\n"
            "  warden validate --config fleet.yaml   # Check the config\n"
            "  warden run --config fleet.yaml        # Drive the fleet from the terminal\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", help="Run a simulated fleet with a console channel")
    p_run.add_argument("--config", default="fleet.yaml", help="Fleet config file")
    p_run.add_argument("--operator", default=None, help="Sender id for console commands")
    p_run.add_argument("--no-persist", action="store_true", help="Keep shared state in memory")

    p_status = sub.add_parser("status", help="Show configured agents")
    p_status.add_argument("--config", default="fleet.yaml", help="Fleet config file")

    p_validate = sub.add_parser("validate", help="Validate a fleet config")
    p_validate.add_argument("--config", default="fleet.yaml", help="Fleet config file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "validate": cmd_validate,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args)
    except WardenError as exc:
        console.print(f"\n  [red]Error:[/] {exc.message}\n")
        return 1
    except KeyboardInterrupt:
        console.print("\n  Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
