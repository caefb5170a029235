"""Sink protocol for appship notification routing.

All sinks implement the ``BaseSink`` protocol: a ``sink_name`` property
and an ``accept(notification)`` method.  The dispatcher calls ``accept``
on every registered sink for every dispatched notification.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from appship.models.notifications import Notification


@runtime_checkable
class BaseSink(Protocol):
    """Protocol that every appship sink must implement.

    Attributes
    ----------
    sink_name : str
        A unique human-readable identifier for this sink instance
        (e.g. ``"local_file"``, ``"email"``).
    """

    @property
    def sink_name(self) -> str:
        """Return the unique name of this sink."""
        ...

    def accept(self, notification: Notification) -> None:
        """Accept and deliver a notification.

        Failures may raise; the dispatcher logs them and continues to the
        next sink.
        """
        ...
