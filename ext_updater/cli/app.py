"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from ext_updater import __version__
from ext_updater.api.client import RepositoryClient
from ext_updater.core.engine import UpdateEngine
from ext_updater.exceptions import ExtUpdaterError
from ext_updater.host.local import LocalExtensionHost
from ext_updater.models.config import UpdaterConfig
from ext_updater.storage.config_manager import ConfigManager
from ext_updater.storage.inventory import InventoryStore
from ext_updater.storage.settings import SettingsStore
from ext_updater.utils.structured_logger import (
    StructuredLogger,
    create_structured_logger,
)

from .formatters import (
    print_config,
    print_inventory_table,
    print_status_table,
    print_summary_panel,
    print_updates_panel,
)
from .notifier import RichNotificationSink, UserAction

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("ext_updater")

app = typer.Typer(
    name="ext-updater",
    help=(
        "Keeps installed shell extensions up to date from an extension repository."
        " Use 'ext-updater <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "ext-updater"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(force_all: bool = False, auto: bool | None = None) -> UpdaterConfig:
    cli_options = {}
    if force_all:
        cli_options["pretend_outdated"] = True
    if auto is not None:
        cli_options["auto_update"] = auto
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


def _build_host(config: UpdaterConfig) -> LocalExtensionHost:
    return LocalExtensionHost(
        Path(config.extensions_dir).expanduser(),
        system_dirs=[Path(d).expanduser() for d in config.system_dirs],
        disabled=config.disabled_extensions,
    )


def _build_engine(
    config: UpdaterConfig, sink: RichNotificationSink
) -> tuple[UpdateEngine, StructuredLogger]:
    settings = SettingsStore(Path(config.config_path))
    events, check_events, update_events = create_structured_logger(
        log_dir=Path(config.config_path) / "logs", enable_json=config.json_log
    )
    engine = UpdateEngine(
        config,
        settings,
        _build_host(config),
        RepositoryClient(config),
        sink,
        check_events=check_events,
        update_events=update_events,
    )
    return engine, events


def _run_until_interrupted(coro):
    """Runs an engine coroutine; Ctrl-C cancels in-flight updates and exits 130."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        console.print(
            "\n[yellow]⚠️  Interrupted. Updates still in flight were cancelled; "
            "run [cyan]ext-updater update[/cyan] to finish them.[/yellow]"
        )
        raise typer.Exit(code=130) from None


def _retry_question(failed: dict[str, str]) -> str:
    return f"Retry {len(failed)} failed extension(s)?"


async def _confirm(question: str) -> bool:
    # The prompt blocks on stdin; keep the engine running meanwhile
    return await asyncio.to_thread(typer.confirm, question, default=True)


async def _answer_actions(
    engine: UpdateEngine,
    sink: RichNotificationSink,
    actions: asyncio.Queue,
    confirm=_confirm,
) -> None:
    """Asks the user about offered updates and failed batches, one at a time."""
    while True:
        action = await actions.get()
        if action == UserAction.UPDATE_ALL:
            if engine.orchestrator.busy or not await confirm(
                "Install the available updates?"
            ):
                continue
            started = await engine.update_all()
        else:
            if not sink.failed or not await confirm(_retry_question(sink.failed)):
                continue
            started = await engine.retry()
        if started:
            await engine.wait_for_batch()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Shell Extension Updater CLI"""
    if version:
        console.print(f"[bold]ext-updater[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    logging.getLogger("ext_updater").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]ext-updater init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    repository_url: str | None = typer.Option(
        None, "--repository-url", help="Base URL of the extension repository."
    ),
    shell_version: str | None = typer.Option(
        None, "--shell-version", help="Shell version reported to the repository."
    ),
    extensions_dir: str | None = typer.Option(
        None, "--extensions-dir", help="Directory holding per-user extensions."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration."
    ),
):
    """Write a default configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {
            "repository_url": repository_url,
            "shell_version": shell_version,
            "extensions_dir": extensions_dir,
        }.items()
        if value is not None
    }
    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready! Try: [cyan]ext-updater check[/cyan]")


@app.command(name="list")
def list_command():
    """List the extensions that are checked for updates."""
    config = _load_config()
    inventory = InventoryStore(_build_host(config), config.self_uuid)
    inventory.reload()
    print_inventory_table(inventory.all(), console=console)


@app.command()
def check(
    force_all: bool = typer.Option(
        False,
        "--force-all",
        help="Report every extension as outdated so the repository offers all of them.",
    ),
):
    """Check the repository once and show the available updates."""
    config = _load_config(force_all=force_all)

    async def _check_async():
        sink = RichNotificationSink(console, show_updates=False)
        engine, events = _build_engine(config, sink)
        try:
            await engine.start(schedule=False)
            result = await engine.check_now()
        finally:
            await engine.stop()
            events.close()

        if not result.ok:
            console.print(f"[red]✗ Update check failed: {result.error}[/red]")
            raise typer.Exit(code=1)
        print_updates_panel(result.updates, console=console)

    asyncio.run(_check_async())


@app.command()
def update(
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Apply the updates without asking."
    ),
    force_all: bool = typer.Option(
        False, "--force-all", help="Reinstall every extension the repository offers."
    ),
):
    """Check the repository and install every available update."""
    config = _load_config(force_all=force_all, auto=False)

    async def _update_async() -> bool:
        sink = RichNotificationSink(console)
        engine, events = _build_engine(config, sink)
        try:
            await engine.start(schedule=False)
            result = await engine.check_now()
            if not result.ok:
                console.print(f"[red]✗ Update check failed: {result.error}[/red]")
                return False
            if not result.updates:
                return True
            if not yes and not typer.confirm(
                f"Install {len(result.updates)} update(s)?", default=True
            ):
                console.print("[yellow]Operation cancelled.[/yellow]")
                return True

            start_time = time.monotonic()
            if await engine.update_all():
                await engine.wait_for_batch()
            succeeded = list(sink.succeeded)
            while (
                sink.failed
                and not yes
                and typer.confirm(_retry_question(sink.failed), default=True)
            ):
                if not await engine.retry():
                    console.print(
                        "[yellow]The failed extensions are no longer installed; "
                        "reinstall them from the repository.[/yellow]"
                    )
                    break
                await engine.wait_for_batch()
                succeeded.extend(sink.succeeded)

            print_summary_panel(
                succeeded,
                sink.failed,
                time.monotonic() - start_time,
                console=console,
            )
            return not sink.failed
        finally:
            await engine.stop()
            events.close()

    if not _run_until_interrupted(_update_async()):
        raise typer.Exit(code=1)


@app.command()
def run(
    auto: bool | None = typer.Option(
        None,
        "--auto/--no-auto",
        help="Install updates as soon as they are found (overrides config).",
    ),
):
    """Run the updater in the foreground until interrupted."""
    config = _load_config(auto=auto)

    async def _run_async():
        if config.startup_delay:
            log.info(f"Waiting {config.startup_delay}s before starting.")
            await asyncio.sleep(config.startup_delay)

        actions: asyncio.Queue = asyncio.Queue()
        # Automatic batches start on their own; only failures need an answer
        sink = RichNotificationSink(
            console, actions=actions, offer_updates=not config.auto_update
        )
        engine, events = _build_engine(config, sink)
        try:
            await engine.start(schedule=True)
            console.print(
                "[bold cyan]🧩 Watching for extension updates. "
                "Press Ctrl-C to stop.[/bold cyan]"
            )
            await _answer_actions(engine, sink, actions)
        finally:
            await engine.stop()
            events.close()

    _run_until_interrupted(_run_async())


@app.command()
def diagnose():
    """Diagnose common configuration and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[red]✗ Config file not found.[/] Run [cyan]ext-updater init[/cyan]."
        )
        raise typer.Exit(code=1)

    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
        settings = SettingsStore(Path(config.config_path))
        console.print("[green]✓[/] Settings state is readable.")
    except ExtUpdaterError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    extensions_dir = Path(config.extensions_dir).expanduser()
    if not extensions_dir.is_dir():
        console.print(
            f"[red]✗ Extensions directory not found:[/] [dim]{extensions_dir}[/dim]"
        )
        issues_found = True
    elif not os.access(extensions_dir, os.W_OK):
        console.print(
            f"[red]✗ Extensions directory is not writable:[/] [dim]{extensions_dir}[/dim]"
        )
        issues_found = True
    else:
        console.print("[green]✓[/] Extensions directory is writable.")

    inventory = InventoryStore(_build_host(config), config.self_uuid)
    inventory.reload()
    print_status_table(config, settings.get_last_check(), len(inventory), console)

    console.print("\n[dim]Testing connectivity to the extension repository...[/dim]")

    async def test_connection() -> bool:
        client = RepositoryClient(config, max_attempts=1)
        try:
            await client.fetch_update_info({})
            console.print("[green]✓[/] Successfully connected to the repository.")
            return True
        except ExtUpdaterError as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            return False
        finally:
            await client.close()

    if not asyncio.run(test_connection()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
