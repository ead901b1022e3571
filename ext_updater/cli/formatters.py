"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ext_updater.models.batch import PendingUpdate
from ext_updater.models.component import ComponentRecord, LifecycleState
from ext_updater.models.config import UpdaterConfig, get_protocol_info
from ext_updater.utils.formatting import format_duration, format_timestamp

STATE_STYLES = {
    LifecycleState.ENABLED: "green",
    LifecycleState.DISABLED: "dim",
    LifecycleState.DOWNLOADING: "cyan",
    LifecycleState.UNINSTALLED: "yellow",
    LifecycleState.ERROR: "red",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `ext-updater init` to create a configuration file.",
            "• Run `ext-updater --show-config` to review the current values.",
            "• Delete `state.json` next to the config if it was corrupted.",
        ],
        "RepositoryError": [
            "• The extension repository may be temporarily unavailable.",
            "• Check `repository_url` in your configuration.",
            "• Run `ext-updater diagnose` to test connectivity.",
        ],
        "ArtifactError": [
            "• The repository served an archive that does not match the extension.",
            "• Try again later; the upload may still be in progress.",
        ],
        "HostError": [
            "• Check that `extensions_dir` exists and is writable.",
            "• Extensions installed system-wide cannot be replaced per-user.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
        ],
        "TimeoutError": [
            "• The repository did not answer in time.",
            "• Increase `request_timeout` in your configuration.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if isinstance(value, list):
            value = ", ".join(value) or "(none)"
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_inventory_table(
    records: list[ComponentRecord], console: Console | None = None
):
    """Displays the extensions the engine tracks."""
    console = console or Console()
    if not records:
        console.print("[yellow]No extensions found.[/yellow]")
        return

    table = Table(title="Installed Extensions", box=box.ROUNDED)
    table.add_column("UUID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Version", justify="right")
    table.add_column("Kind", style="dim")
    table.add_column("State")

    for record in sorted(records, key=lambda r: r.uuid):
        style = STATE_STYLES.get(record.state, "")
        table.add_row(
            escape(record.uuid),
            escape(record.name),
            record.version or "[dim]-[/dim]",
            record.kind.value.replace("_", "-"),
            f"[{style}]{record.state.value}[/{style}]",
        )
    console.print(table)


def print_updates_panel(updates: list[PendingUpdate], console: Console | None = None):
    """Displays the updates found by a check."""
    console = console or Console()
    if not updates:
        console.print("[green]✓ All extensions are up to date.[/green]")
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()
    for update in updates:
        tag = f"[dim]tag {update.version_tag}[/dim]" if update.version_tag else ""
        table.add_row(escape(update.name), tag)

    console.print(
        Panel(
            table,
            title=f"[bold]🧩 {len(updates)} update(s) available[/bold]",
            border_style="cyan",
            expand=False,
        )
    )


def print_status_table(
    config: UpdaterConfig,
    last_check: int,
    tracked: int,
    console: Console | None = None,
):
    """Displays a summary of the current settings and schedule."""
    console = console or Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    protocol = get_protocol_info(config.protocol)
    table.add_row("Repository:", config.repository_url)
    table.add_row("Protocol:", f"{config.protocol} ({protocol['name']})")
    table.add_row("Shell Version:", config.shell_version)
    table.add_row("Extensions:", f"[dim]{config.extensions_dir}[/dim]")
    table.add_row("Tracked:", str(tracked))
    table.add_row("Last Check:", format_timestamp(last_check))
    table.add_row("Check Interval:", format_duration(config.update_interval))
    table.add_row(
        "Automatic Update:", "✓ Enabled" if config.auto_update else "✗ Disabled"
    )

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_summary_panel(
    succeeded: list[str],
    failed: dict[str, str],
    duration_s: float,
    console: Console | None = None,
):
    """Displays the final summary of an update batch."""
    console = console or Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=14)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Updated:", f"[bold green]{len(succeeded)}[/bold green]")
    if failed:
        stats_table.add_row("✗ Failed:", f"[bold red]{len(failed)}[/bold red]")
        for name, message in failed.items():
            stats_table.add_row("", f"[red]{escape(name)}[/red]: {escape(message)}")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if failed:
        title = "⚠️  [bold]Update Finished With Errors[/bold]"
        border_color = "yellow"
    else:
        title = "🧩 [bold]Update Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
