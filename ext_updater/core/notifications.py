"""
The outbound notification contract of the update engine.
"""

from ext_updater.models.batch import PendingUpdate


class NotificationSink:
    """
    Receives the engine's high-level milestones.

    Every method is fire-and-forget. The base implementation ignores all
    events so sinks only override what they render.
    """

    def updates_available(self, updates: list[PendingUpdate]) -> None:
        pass

    def batch_started(self) -> None:
        pass

    def item_succeeded(self, name: str) -> None:
        pass

    def item_failed(self, name: str, message: str) -> None:
        pass

    def batch_finished(self, all_succeeded: bool) -> None:
        pass
