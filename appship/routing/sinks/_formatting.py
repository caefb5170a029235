"""Shared formatting helpers for appship notification sinks."""

from __future__ import annotations

from appship.models.notifications import Notification


def format_kind_label(notification: Notification) -> str:
    """Return a human-readable label for the notification kind.

    Examples
    --------
    >>> from appship.models.notifications import Notification, NotificationKind
    >>> format_kind_label(Notification(kind=NotificationKind.FAILURE, run_id="r", message="m"))
    'Build Failed'
    """
    return "Build Succeeded" if notification.kind.value == "success" else "Build Failed"


def extract_stage_id(notification: Notification, default: str = "N/A") -> str:
    return notification.stage_id or default


def extract_detail_lines(notification: Notification) -> list[str]:
    """Return ``"Label: value"`` lines for the notification's details.

    Keys are title-cased (``package_sha256`` -> ``Package Sha256``) and
    emitted in sorted order so every sink renders them identically.
    """
    return [
        f"{key.replace('_', ' ').title()}: {value}"
        for key, value in sorted(notification.details.items())
    ]
