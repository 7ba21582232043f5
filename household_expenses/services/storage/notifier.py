"""
Change notification for live expense feeds.

Storages call notify() after every write that touches a household's
expenses; subscribers get the household id and re-read what they need.
"""

import inspect
from collections import defaultdict

import structlog

from household_expenses.services.storage.interface import ChangeCallback, Unsubscribe


class ChangeNotifier:
    """Registry of per-household change callbacks."""

    def __init__(self):
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._logger = structlog.get_logger(__name__)

    def subscribe(self, household_id: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers[household_id].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(household_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(household_id, None)

        return unsubscribe

    async def notify(self, household_id: str) -> None:
        """
        Fire every callback registered for the household.

        A failing subscriber is logged and does not stop the others or
        fail the write that triggered the notification.
        """
        for callback in list(self._subscribers.get(household_id, [])):
            try:
                result = callback(household_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    "subscriber_callback_failed",
                    household_id=household_id,
                    error=str(e),
                )
