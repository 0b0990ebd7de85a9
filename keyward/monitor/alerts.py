"""
Alert channels for security events — pluggable notification backends.

Each channel decides for itself whether an event is worth sending
(should_alert) and reports the outcome as an AlertResult. Channels never raise
to the dispatcher; the dispatcher additionally bounds every channel with its
own timeout so one slow sink cannot hold up the others.

Usage:
    from keyward.monitor.alerts import AlertDispatcher, ConsoleAlert, WebhookAlert

    dispatcher = AlertDispatcher()
    dispatcher.add_channel(ConsoleAlert())
    dispatcher.add_channel(WebhookAlert(url="https://example.com/hook"))
    results = await dispatcher.dispatch(event)
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import StrEnum

import aiosmtplib
import httpx

from keyward.errors import AlertDeliveryError
from keyward.monitor.models import SecurityEvent, SecurityEventType, Severity

logger = logging.getLogger(__name__)

ALERT_SOURCE = "keyward"


class ChannelKind(StrEnum):
    CONSOLE = "console"
    WEBHOOK = "webhook"
    EMAIL = "email"


@dataclass
class AlertResult:
    success: bool
    channel_name: str
    channel_kind: ChannelKind
    error: Exception | None = None


# ─── Channel configs ─────────────────────────────────────────────────


@dataclass(frozen=True)
class ConsoleChannelConfig:
    name: str = "Console"
    enabled: bool = True
    min_severity: Severity = Severity.LOW
    event_types: tuple[SecurityEventType, ...] = ()


@dataclass(frozen=True)
class WebhookChannelConfig:
    url: str
    name: str = "Webhook"
    enabled: bool = True
    min_severity: Severity = Severity.MEDIUM
    event_types: tuple[SecurityEventType, ...] = ()
    method: str = "POST"  # POST | GET
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 5.0
    retry_count: int = 3
    backoff: float = 1.0


@dataclass(frozen=True)
class EmailChannelConfig:
    host: str
    sender: str
    recipients: tuple[str, ...]
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = False
    start_tls: bool = True
    subject: str = ""
    name: str = "Email"
    enabled: bool = True
    min_severity: Severity = Severity.HIGH
    event_types: tuple[SecurityEventType, ...] = ()


ChannelConfig = ConsoleChannelConfig | WebhookChannelConfig | EmailChannelConfig


# ─── Channels ────────────────────────────────────────────────────────


def format_event(event: SecurityEvent) -> str:
    """Plain-text rendering shared by the console and email channels."""
    lines = [
        f"ID: {event.id}",
        f"Type: {event.type}",
        f"Time: {event.timestamp.isoformat()}",
        f"IP: {event.ip}",
        f"Path: {event.path}",
        f"Severity: {event.severity}",
        "Details:",
    ]
    for key, value in event.details.items():
        lines.append(f"  {key}: {json.dumps(value, default=str)}")
    return "\n".join(lines)


class AlertChannel(ABC):
    """Base class for alert channels."""

    kind: ChannelKind

    def __init__(
        self,
        name: str,
        enabled: bool = True,
        min_severity: Severity = Severity.LOW,
        event_types: tuple[SecurityEventType, ...] = (),
    ):
        self.name = name
        self.enabled = enabled
        self.min_severity = min_severity
        self.event_types = tuple(event_types)

    def should_alert(self, event: SecurityEvent) -> bool:
        if not self.enabled:
            return False
        if event.severity.rank < self.min_severity.rank:
            return False
        if self.event_types and event.type not in self.event_types:
            return False
        return True

    @abstractmethod
    async def send_alert(self, event: SecurityEvent) -> AlertResult:
        """Deliver one event. Must report failures in the result, not raise."""

    def _ok(self) -> AlertResult:
        return AlertResult(success=True, channel_name=self.name, channel_kind=self.kind)

    def _failed(self, error: Exception) -> AlertResult:
        logger.error("Alert channel %s (%s) failed: %s", self.name, self.kind, error)
        return AlertResult(
            success=False, channel_name=self.name, channel_kind=self.kind, error=error
        )


_CONSOLE_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}


class ConsoleAlert(AlertChannel):
    """Writes alerts to the process log at a level matching the severity."""

    kind = ChannelKind.CONSOLE

    def __init__(self, config: ConsoleChannelConfig | None = None):
        config = config or ConsoleChannelConfig()
        super().__init__(config.name, config.enabled, config.min_severity, config.event_types)

    async def send_alert(self, event: SecurityEvent) -> AlertResult:
        if not self.should_alert(event):
            return self._ok()
        try:
            logger.log(
                _CONSOLE_LEVELS.get(event.severity, logging.INFO),
                "Security alert: %s\n%s",
                event.type,
                format_event(event),
            )
            return self._ok()
        except Exception as e:
            return self._failed(e)


class WebhookAlert(AlertChannel):
    """POSTs (or GETs) the event to an HTTP endpoint, retrying with linear backoff."""

    kind = ChannelKind.WEBHOOK

    def __init__(self, config: WebhookChannelConfig):
        super().__init__(config.name, config.enabled, config.min_severity, config.event_types)
        self.url = config.url
        self.method = config.method.upper()
        self.headers = dict(config.headers) or {"Content-Type": "application/json"}
        self.timeout = config.timeout
        self.retry_count = max(config.retry_count, 1)
        self.backoff = config.backoff

    def _payload(self, event: SecurityEvent) -> dict:
        return {
            "event": event.to_dict(),
            "timestamp": datetime.now(UTC).isoformat(),
            "source": ALERT_SOURCE,
        }

    async def _attempt(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        if self.method == "GET":
            params = {**payload, "event": json.dumps(payload["event"])}
            resp = await client.get(self.url, params=params, headers=self.headers)
        else:
            resp = await client.post(self.url, json=payload, headers=self.headers)
        resp.raise_for_status()
        return resp

    async def send_alert(self, event: SecurityEvent) -> AlertResult:
        if not self.should_alert(event):
            return self._ok()

        payload = self._payload(event)
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.retry_count + 1):
                try:
                    resp = await self._attempt(client, payload)
                    logger.info(
                        "Webhook alert %s delivered (event=%s, status=%d)",
                        self.name,
                        event.id,
                        resp.status_code,
                    )
                    return self._ok()
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "Webhook alert %s attempt %d/%d failed: %s",
                        self.name,
                        attempt,
                        self.retry_count,
                        e,
                    )
                    if attempt < self.retry_count:
                        await asyncio.sleep(self.backoff * attempt)

        return self._failed(
            AlertDeliveryError(
                f"Webhook {self.name} failed after {self.retry_count} attempts: {last_error}",
                channel=self.name,
            )
        )


_SEVERITY_COLORS = {
    Severity.INFO: "#2196F3",
    Severity.LOW: "#4CAF50",
    Severity.MEDIUM: "#FF9800",
    Severity.HIGH: "#F44336",
    Severity.CRITICAL: "#9C27B0",
}


class EmailAlert(AlertChannel):
    """Sends a plain-text + HTML email through SMTP (aiosmtplib)."""

    kind = ChannelKind.EMAIL

    def __init__(self, config: EmailChannelConfig):
        super().__init__(config.name, config.enabled, config.min_severity, config.event_types)
        self.config = config

    def subject(self, event: SecurityEvent) -> str:
        return self.config.subject or f"[Security alert] {event.severity.upper()} - {event.type}"

    def render_html(self, event: SecurityEvent) -> str:
        color = _SEVERITY_COLORS.get(event.severity, "#757575")
        rows = "".join(
            f"<tr><td><strong>{html.escape(str(key))}</strong></td>"
            f"<td>{html.escape(json.dumps(value, default=str))}</td></tr>"
            for key, value in event.details.items()
        )
        return f"""
        <html>
          <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="background-color: {color}; color: white; padding: 10px; border-radius: 5px;">
              <h2>Security alert: {html.escape(str(event.type))}</h2>
              <p>Severity: {html.escape(event.severity.upper())}</p>
            </div>
            <p><strong>Event ID:</strong> {html.escape(event.id)}</p>
            <p><strong>Time:</strong> {event.timestamp.isoformat()}</p>
            <p><strong>IP:</strong> {html.escape(event.ip)}</p>
            <p><strong>Path:</strong> {html.escape(event.path)}</p>
            <table style="width: 100%; border-collapse: collapse;">
              <tr><th>Field</th><th>Value</th></tr>
              {rows}
            </table>
            <p style="font-size: 12px; color: #777;">Automated message from keyward.</p>
          </body>
        </html>
        """

    def build_message(self, event: SecurityEvent) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.config.sender
        msg["To"] = ", ".join(self.config.recipients)
        msg["Subject"] = self.subject(event)
        msg.attach(MIMEText(format_event(event), "plain"))
        msg.attach(MIMEText(self.render_html(event), "html"))
        return msg

    async def send_alert(self, event: SecurityEvent) -> AlertResult:
        if not self.should_alert(event):
            return self._ok()
        try:
            await aiosmtplib.send(
                self.build_message(event),
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username or None,
                password=self.config.password or None,
                use_tls=self.config.use_tls,
                start_tls=self.config.start_tls and not self.config.use_tls,
            )
            logger.info("Email alert %s sent for event %s", self.name, event.id)
            return self._ok()
        except Exception as e:
            return self._failed(e)


def create_channel(config: ChannelConfig) -> AlertChannel:
    """Build a channel from its config. Raises ValueError for an unknown config."""
    match config:
        case ConsoleChannelConfig():
            return ConsoleAlert(config)
        case WebhookChannelConfig():
            return WebhookAlert(config)
        case EmailChannelConfig():
            return EmailAlert(config)
        case _:
            raise ValueError(f"Unknown alert channel config: {config!r}")


# ─── Dispatcher ──────────────────────────────────────────────────────


class AlertDispatcher:
    """Fans an event out to every eligible channel concurrently."""

    def __init__(self, channels: list[AlertChannel] | None = None, timeout: float = 30.0):
        self.channels: list[AlertChannel] = list(channels or [])
        self.timeout = timeout

    def add_channel(self, channel: AlertChannel) -> None:
        self.channels.append(channel)
        logger.info("Alert channel registered: %s (%s)", channel.name, channel.kind)

    async def _run(self, channel: AlertChannel, event: SecurityEvent) -> AlertResult:
        try:
            return await asyncio.wait_for(channel.send_alert(event), timeout=self.timeout)
        except TimeoutError:
            return channel._failed(
                AlertDeliveryError(
                    f"Channel {channel.name} timed out after {self.timeout}s", channel=channel.name
                )
            )
        except Exception as e:
            return channel._failed(e)

    async def dispatch(self, event: SecurityEvent) -> list[AlertResult]:
        eligible = [c for c in self.channels if c.should_alert(event)]
        if not eligible:
            return []
        return list(await asyncio.gather(*(self._run(c, event) for c in eligible)))
