import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from . import daemon
from .config import Config
from .constants import APP_NAME, VERSION
from .exceptions import ConfigurationError

console = Console()
err_console = Console(stderr=True)


def show_banner(conf: Config, watch: bool) -> None:
    """Prints the effective settings before the first sync."""
    content = Text()
    content.append("Projects: ", style="bold")
    content.append(", ".join(str(root) for root in conf.sync.roots) + "\n")
    content.append("Gitea:    ", style="bold")
    content.append(f"{conf.remote.base_url}\n")
    content.append("Owner:    ", style="bold")
    content.append(f"{conf.remote.owner}\n")
    content.append("Debounce: ", style="bold")
    content.append(f"{int(conf.sync.debounce * 1000)}ms\n")
    content.append("Conflict: ", style="bold")
    content.append(f"{conf.sync.conflict_policy}\n")
    content.append("Mode:     ", style="bold")
    if watch:
        content.append("Watching", style="green")
    else:
        content.append("Single sync", style="dim")

    console.print(Panel(content, title="Gitea AutoSync", expand=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Mirror every project directory into its own Gitea repository.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep running and sync changes as they happen",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="TOML configuration file (default: ~/.config/gitea-autosync/config.toml)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Console entry point for ``gitea-autosync``."""
    args = build_parser().parse_args(argv)

    try:
        conf = Config.load(config_file=args.config)
    except ConfigurationError as e:
        err_console.print(f"[bold red]ERROR:[/bold red] {e}")
        err_console.print(
            "   Set it in the environment or a .env file, e.g. "
            "[cyan]export GITEA_TOKEN=...[/cyan]"
        )
        sys.exit(1)

    daemon.setup_logging(
        verbose=args.verbose,
        log_file=conf.limits.log_file,
        max_log_size=conf.limits.max_log_size,
    )
    show_banner(conf, args.watch)

    try:
        status = asyncio.run(daemon.run(conf, watch=args.watch))
    except KeyboardInterrupt:
        status = 0
    sys.exit(status)


if __name__ == "__main__":
    main()
