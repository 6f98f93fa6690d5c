"""
Notify module for the Ennoblement Watcher pipeline.

This module renders matching ennoblement events into a message and
delivers it through a notification channel. Supported channels:
- Log (development and dry runs)
- Webhook (JSON POST to each recipient URL)
- Email via SMTP with TLS

Every channel implements the same small interface: is_ready() and an
asynchronous notify_many(recipients, message).
"""

import asyncio
import smtplib
import ssl
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import List, Optional, Sequence

import requests

from ennoblement_watcher.models import EnnoblementEvent
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("notify")

TEMPLATE_PLACEHOLDER = "{{items}}"
NO_TRIBE = "No Tribe"

WEBHOOK_TIMEOUT = 15  # seconds
SMTP_TIMEOUT = 30  # seconds


class NotificationError(Exception):
    """Raised when a message could not be delivered through the channel."""

    def __init__(self, message: str, failed_recipients: Optional[List[str]] = None):
        super().__init__(message)
        self.failed_recipients = failed_recipients or []


class NotifierNotReadyError(NotificationError):
    """Raised when the channel is not ready to deliver messages."""


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def format_tribe(tribe: Optional[str]) -> str:
    """Render a tribe tag in brackets, using a fixed sentinel when absent."""
    return f"[{tribe}]" if tribe else f"[{NO_TRIBE}]"


def describe_change(event: EnnoblementEvent, faction_name: Optional[str] = None) -> str:
    """
    Describe the change from the watched faction's point of view.

    Args:
        event: The ennoblement event.
        faction_name: Watched faction, or None when filtering is disabled.

    Returns:
        Status line: village gained, lost, or changed hands.
    """
    if faction_name:
        wanted = faction_name.strip().lower()
        if event.new_tribe and event.new_tribe.strip().lower() == wanted:
            return "🟢 *VILLAGE GAINED*"
        if event.old_tribe and event.old_tribe.strip().lower() == wanted:
            return "🔴 *VILLAGE LOST*"
    return "🟡 *VILLAGE CHANGED HANDS*"


def format_event_block(event: EnnoblementEvent, faction_name: Optional[str] = None) -> str:
    """
    Format a single event as a message block.

    Args:
        event: The ennoblement event.
        faction_name: Watched faction used for the status line.

    Returns:
        Multi-line block describing the event.
    """
    lines = [
        describe_change(event, faction_name),
        f"🏘️ *{event.village_name}* ({event.coordinates}) {event.continent}",
        f"📊 {event.points:,} points",
        f"👤 Old owner: {event.old_player} {format_tribe(event.old_tribe)}",
        f"👤 New owner: {event.new_player} {format_tribe(event.new_tribe)}",
        f"⏰ {event.timestamp}",
    ]
    return "\n".join(lines)


def format_items(events: Sequence[EnnoblementEvent], faction_name: Optional[str] = None) -> str:
    """Concatenate the blocks of all events, separated by blank lines."""
    return "\n\n".join(format_event_block(e, faction_name) for e in events)


def render_message(
    events: Sequence[EnnoblementEvent],
    template: Optional[str] = None,
    faction_name: Optional[str] = None
) -> str:
    """
    Render the notification message for matching events.

    With a template, its placeholder is replaced by all event blocks.
    Without one, a single event renders as its block and several events
    get a count header followed by numbered blocks.

    Args:
        events: Matching events, most recent first. Must not be empty.
        template: Optional template containing TEMPLATE_PLACEHOLDER.
        faction_name: Watched faction used for status lines.

    Returns:
        Message text.

    Raises:
        ValueError: If events is empty.
    """
    if not events:
        raise ValueError("Cannot render a notification for zero events")

    if template:
        return template.replace(TEMPLATE_PLACEHOLDER, format_items(events, faction_name))

    if len(events) == 1:
        return format_event_block(events[0], faction_name)

    lines = [f"🏰 *{len(events)} New Ennoblement Events*", ""]
    for i, event in enumerate(events, 1):
        lines.append(f"{i}. {format_event_block(event, faction_name)}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class Notifier:
    """Base class for notification channels."""

    name = "base"

    def is_ready(self) -> bool:
        return True

    async def notify_many(self, recipients: Sequence[str], message: str) -> None:
        raise NotImplementedError


class LogNotifier(Notifier):
    """Writes messages to the log instead of delivering them."""

    name = "log"

    async def notify_many(self, recipients: Sequence[str], message: str) -> None:
        target = ", ".join(recipients) if recipients else "(no recipients)"
        logger.info(f"Notification for {target}:\n{message}")


class WebhookNotifier(Notifier):
    """
    Posts messages as JSON to each recipient webhook URL.

    Per-recipient failures are logged; NotificationError is raised only
    when no recipient received the message.
    """

    name = "webhook"

    def __init__(self, session: Optional[requests.Session] = None, timeout: int = WEBHOOK_TIMEOUT):
        self._session = session or requests.Session()
        self.timeout = timeout

    def _post(self, url: str, message: str) -> None:
        response = self._session.post(url, json={"content": message}, timeout=self.timeout)
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"HTTP {response.status_code}")

    def send_sync(self, recipients: Sequence[str], message: str) -> None:
        if not recipients:
            logger.warning("No webhook recipients provided for notification")
            return

        logger.info(f"Sending notification to {len(recipients)} webhook(s)")
        failed: List[str] = []

        for url in recipients:
            try:
                self._post(url, message)
                logger.debug(f"Webhook delivered: {url}")
            except (requests.exceptions.RequestException, NotificationError) as e:
                logger.error(f"Failed to deliver webhook to {url}: {e}")
                failed.append(url)

        logger.info(
            f"Notification sending completed: {len(recipients) - len(failed)} "
            f"successful, {len(failed)} failed"
        )

        if len(failed) == len(recipients):
            raise NotificationError("All webhook deliveries failed", failed)

    async def notify_many(self, recipients: Sequence[str], message: str) -> None:
        await asyncio.to_thread(self.send_sync, list(recipients), message)


class EmailNotifier(Notifier):
    """
    Sends messages by email via SMTP with TLS.

    Supports both:
    - Port 465: SMTP_SSL (implicit TLS)
    - Other ports: SMTP with STARTTLS (explicit TLS)
    """

    name = "email"

    def __init__(
        self,
        host: Optional[str],
        port: int,
        username: Optional[str],
        password: Optional[str],
        sender: Optional[str],
        subject: str = "Ennoblement Update"
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.subject = subject

    def is_ready(self) -> bool:
        return all([self.host, self.port, self.username, self.password, self.sender])

    def build_message(self, recipients: Sequence[str], body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Date"] = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
        msg.set_content(body)
        return msg

    def send_sync(self, recipients: Sequence[str], message: str) -> None:
        if not self.is_ready():
            raise NotifierNotReadyError("Email notifier not ready: SMTP settings incomplete")

        if not recipients:
            logger.warning("No email recipients provided for notification")
            return

        msg = self.build_message(recipients, message)
        ssl_context = ssl.create_default_context()

        logger.info(f"Connecting to SMTP server: {self.host}:{self.port}")

        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=SMTP_TIMEOUT, context=ssl_context) as server:
                    server.login(self.username, self.password)
                    refused = server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT) as server:
                    server.starttls(context=ssl_context)
                    server.login(self.username, self.password)
                    refused = server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            raise NotificationError(f"SMTP authentication failed: {e}") from e
        except smtplib.SMTPRecipientsRefused as e:
            raise NotificationError(f"All recipients refused: {e}", list(recipients)) from e
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            raise NotificationError(f"SMTP error while sending email: {e}") from e

        for address, reason in (refused or {}).items():
            logger.error(f"Recipient {address} refused: {reason}")

        logger.info(f"Email notification sent to {len(recipients) - len(refused or {})} recipient(s)")

    async def notify_many(self, recipients: Sequence[str], message: str) -> None:
        await asyncio.to_thread(self.send_sync, list(recipients), message)
