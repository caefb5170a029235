"""Notification models — the one message a pipeline run emits."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class NotificationKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Notification(BaseModel):
    """Fire-and-forget run notification routed to every configured sink."""

    model_config = ConfigDict(frozen=True)

    notification_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: NotificationKind
    platform: str = "ios"
    run_id: str
    message: str
    stage_id: str | None = None  # failing stage, for failure notifications
    details: dict[str, str] = {}
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
