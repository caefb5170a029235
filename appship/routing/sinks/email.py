"""Email notification sink — builds email payloads and optionally sends them.

``EmailSink`` turns each notification into an ``EmailPayload``.  With a
transport attached the payload is delivered immediately; without one it is
queued for ``flush()``.  ``SmtpTransport`` delivers payloads with the
standard library SMTP client.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from appship.models.notifications import Notification
from appship.routing.sinks._formatting import (
    extract_detail_lines,
    extract_stage_id,
    format_kind_label,
)

logger = logging.getLogger(__name__)


class EmailPayload(BaseModel):
    """An email notification payload ready for SMTP delivery."""

    model_config = ConfigDict(frozen=True)

    recipient: str
    sender: str
    subject: str
    body_text: str
    body_html: str = ""
    headers: dict[str, str] = {}


class EmailTransport(Protocol):
    def send(self, payload: EmailPayload) -> None: ...


class SmtpTransport:
    """Sends ``EmailPayload`` objects through an SMTP server.

    Parameters
    ----------
    host, port:
        SMTP server address.
    username, password:
        Login credentials; login is skipped when *username* is empty.
    use_tls:
        Upgrade the connection with STARTTLS before logging in.
    timeout:
        Socket timeout in seconds.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    @staticmethod
    def build_message(payload: EmailPayload) -> EmailMessage:
        message = EmailMessage()
        message["From"] = payload.sender
        message["To"] = payload.recipient
        message["Subject"] = payload.subject
        for name, value in payload.headers.items():
            message[name] = value
        message.set_content(payload.body_text)
        if payload.body_html:
            message.add_alternative(payload.body_html, subtype="html")
        return message

    def send(self, payload: EmailPayload) -> None:
        message = self.build_message(payload)
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._use_tls:
                smtp.starttls()
            if self._username:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        logger.info("Sent notification email to %s via %s:%d", payload.recipient, self._host, self._port)

    def __repr__(self) -> str:
        return f"<SmtpTransport {self._host}:{self._port} user={self._username!r}>"


class EmailSink:
    """Builds email notification payloads from notifications.

    Parameters
    ----------
    recipient:
        The email address to send notifications to.
    sender:
        The sender address.  Defaults to ``appship@localhost``.
    transport:
        Delivers each payload as it is built.  When ``None`` payloads are
        queued until ``flush()``.
    """

    def __init__(
        self,
        recipient: str,
        sender: str = "appship@localhost",
        transport: EmailTransport | None = None,
    ) -> None:
        self._recipient = recipient
        self._sender = sender
        self._transport = transport
        self._pending_payloads: list[EmailPayload] = []

    @property
    def sink_name(self) -> str:
        return "email"

    def accept(self, notification: Notification) -> None:
        """Build the payload and deliver it, or queue it without a transport."""
        payload = self.build_payload(notification)
        if self._transport is None:
            self._pending_payloads.append(payload)
            logger.debug(
                "EmailSink: queued notification %s", notification.notification_id
            )
            return
        self._transport.send(payload)

    def build_payload(self, notification: Notification) -> EmailPayload:
        return EmailPayload(
            recipient=self._recipient,
            sender=self._sender,
            subject=self._format_subject(notification),
            body_text=self._format_body_text(notification),
            body_html=self._format_body_html(notification),
            headers={
                "X-Appship-Run-Id": notification.run_id,
                "X-Appship-Notification-Id": notification.notification_id,
                "X-Appship-Kind": notification.kind.value,
            },
        )

    def flush(self) -> list[EmailPayload]:
        """Return and clear all pending payloads."""
        payloads = list(self._pending_payloads)
        self._pending_payloads.clear()
        return payloads

    @property
    def pending_count(self) -> int:
        """Return the number of pending payloads."""
        return len(self._pending_payloads)

    @staticmethod
    def _format_subject(notification: Notification) -> str:
        kind = format_kind_label(notification)
        return f"[appship/{notification.platform}] {kind} — {notification.run_id}"

    @staticmethod
    def _format_body_text(notification: Notification) -> str:
        kind = format_kind_label(notification)
        lines: list[str] = [
            f"appship {kind}",
            "=" * 40,
            f"Platform:  {notification.platform}",
            f"Run ID:    {notification.run_id}",
            f"Stage:     {extract_stage_id(notification)}",
            f"Timestamp: {notification.timestamp_utc.isoformat()}",
            "",
            notification.message,
            "",
        ]
        lines.extend(extract_detail_lines(notification))
        lines.append("")
        lines.append("-- appship build notification")
        return "\n".join(lines)

    @staticmethod
    def _format_body_html(notification: Notification) -> str:
        kind = format_kind_label(notification)
        rows: list[str] = [
            f"<tr><td><b>Platform</b></td><td>{html.escape(notification.platform)}</td></tr>",
            f"<tr><td><b>Run ID</b></td><td><code>{html.escape(notification.run_id)}</code></td></tr>",
            f"<tr><td><b>Stage</b></td><td><code>{html.escape(extract_stage_id(notification))}</code></td></tr>",
            f"<tr><td><b>Timestamp</b></td><td>{notification.timestamp_utc.isoformat()}</td></tr>",
        ]
        for key, value in sorted(notification.details.items()):
            rows.append(
                f"<tr><td><b>{html.escape(key)}</b></td><td>{html.escape(value)}</td></tr>"
            )
        table = "\n".join(rows)
        return (
            f"<h2>appship {kind}</h2>\n"
            f"<p>{html.escape(notification.message)}</p>\n"
            f"<table>\n{table}\n</table>\n"
            f"<hr/><p><em>appship build notification</em></p>"
        )
