"""SinkDispatcher — routes notifications to ALL configured sinks.

Every notification dispatched through this module is fanned out to every
registered sink.  Sink failures are logged but do not prevent delivery to
remaining sinks.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from appship.models.notifications import Notification

if TYPE_CHECKING:
    from appship.routing.sinks import BaseSink

logger = logging.getLogger(__name__)


class SinkDispatchError(RuntimeError):
    """Raised when every sink fails during dispatch."""


class SinkDispatcher:
    """Routes notifications to ALL configured sinks.

    Usage
    -----
    >>> dispatcher = SinkDispatcher()
    >>> dispatcher.register_sink(local_file_sink)
    >>> dispatcher.register_sink(email_sink)
    >>> dispatcher.dispatch(notification)
    """

    def __init__(self) -> None:
        self._sinks: list[BaseSink] = []

    # ------------------------------------------------------------------
    # Sink management
    # ------------------------------------------------------------------

    def register_sink(self, sink: BaseSink) -> None:
        """Register a sink to receive dispatched notifications.

        Sinks are called in registration order.  Duplicate registration
        of the same sink instance is ignored.
        """
        if sink not in self._sinks:
            self._sinks.append(sink)
            logger.info("Registered sink: %s", sink.sink_name)

    @property
    def registered_sinks(self) -> list[BaseSink]:
        """Return a copy of the registered sink list."""
        return list(self._sinks)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, notification: Notification) -> list[str]:
        """Dispatch a notification to ALL registered sinks.

        Returns a list of sink names that successfully received the
        notification.

        Raises
        ------
        SinkDispatchError
            If *all* sinks fail.  Individual failures are tolerated.
        """
        if not self._sinks:
            logger.warning(
                "No sinks registered — notification %s dropped", notification.notification_id
            )
            return []

        succeeded: list[str] = []
        errors: list[tuple[str, Exception]] = []

        for sink in self._sinks:
            try:
                sink.accept(notification)
                succeeded.append(sink.sink_name)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Sink %s failed for notification %s: %s",
                    sink.sink_name,
                    notification.notification_id,
                    exc,
                )
                errors.append((sink.sink_name, exc))

        if errors and not succeeded:
            raise SinkDispatchError(
                f"All {len(errors)} sinks failed for notification "
                f"{notification.notification_id}: "
                + "; ".join(f"{name}: {exc}" for name, exc in errors)
            )

        if errors:
            logger.warning(
                "Notification %s: %d/%d sinks succeeded, %d failed",
                notification.notification_id,
                len(succeeded),
                len(self._sinks),
                len(errors),
            )

        return succeeded
