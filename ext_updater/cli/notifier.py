"""
Renders the engine's milestones on a Rich console.
"""

import asyncio
from enum import Enum

from rich.console import Console
from rich.markup import escape

from ext_updater.core.notifications import NotificationSink
from ext_updater.models.batch import PendingUpdate

from .formatters import print_updates_panel


class UserAction(Enum):
    """Questions the foreground updater puts to the user."""

    UPDATE_ALL = "update_all"
    RETRY = "retry"


class RichNotificationSink(NotificationSink):
    """
    Prints what the user needs to see and keeps per-batch counters for the
    final summary.

    With ``actions`` set, offered updates and failed batches are queued as
    UserAction items so the command can ask the user what to do.
    """

    def __init__(
        self,
        console: Console,
        show_updates: bool = True,
        actions: asyncio.Queue | None = None,
        offer_updates: bool = True,
    ):
        self.console = console
        self.show_updates = show_updates
        self.actions = actions
        self.offer_updates = offer_updates
        self.succeeded: list[str] = []
        self.failed: dict[str, str] = {}

    def updates_available(self, updates: list[PendingUpdate]) -> None:
        if self.show_updates:
            print_updates_panel(updates, console=self.console)
        if updates and self.offer_updates and self.actions is not None:
            self.actions.put_nowait(UserAction.UPDATE_ALL)

    def batch_started(self) -> None:
        self.succeeded = []
        self.failed = {}
        self.console.print("[bold cyan]🧩 Updating extensions...[/bold cyan]")

    def item_succeeded(self, name: str) -> None:
        self.succeeded.append(name)
        self.console.print(f"[green]✓ {escape(name)} updated[/green]")

    def item_failed(self, name: str, message: str) -> None:
        self.failed[name] = message
        self.console.print(f"[red]✗ {escape(name)}: {escape(message)}[/red]")

    def batch_finished(self, all_succeeded: bool) -> None:
        if all_succeeded:
            self.console.print(
                "[bold green]✓ All extensions updated successfully.[/bold green] "
                "Restart the shell to load the new versions."
            )
            return
        self.console.print(
            "[bold yellow]⚠️  Some extensions could not be updated.[/bold yellow]"
        )
        if self.actions is not None:
            self.actions.put_nowait(UserAction.RETRY)
