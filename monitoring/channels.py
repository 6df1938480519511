"""
============================================================================
INTERNET MONITOR - NOTIFICATION CHANNELS
============================================================================
Outbound delivery of a formatted notification to one external service.

Channels
--------
• DiscordChannel   - webhook with a coloured embed
• SlackChannel     - incoming webhook, plain text
• TelegramChannel  - Bot API ``sendMessage`` (HTML parse mode, text escaped)
• WebhookChannel   - user-defined URL / method / headers, JSON body
• SmsChannel       - Twilio REST ``Messages.json``
• EmailChannel     - SMTP (smtplib, run in a worker thread)

The browser channel has no outbound call: every dispatched notification is
pushed to WebSocket subscribers by the NotificationGate itself, and the
dashboard decides whether to show it.

Every channel raises ``NotificationChannelError`` on failure; the gate
catches it per channel so one failing service never affects the others.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import asyncio
import html
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from config.constants import ALERT_COLOR_OK, ALERT_COLOR_PROBLEM, EventType
from config.settings import get_settings
from exceptions import NotificationChannelError
from monitoring.models import (
    ChannelConfig,
    DiscordChannelConfig,
    EmailChannelConfig,
    NotificationSettings,
    SlackChannelConfig,
    SmsChannelConfig,
    TelegramChannelConfig,
    WebhookChannelConfig,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger


logger = get_logger("Channels")

USER_AGENT = "InternetMonitor/1.0"


# ============================================================================
# BASE CLASSES
# ============================================================================

class NotificationChannel(ABC):
    """One outbound notification destination."""

    name: str = "channel"

    @abstractmethod
    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        """
        Deliver *message*.

        Raises:
            NotificationChannelError: on any delivery failure
        """


class HttpChannel(NotificationChannel):
    """
    Base for channels that make a single HTTP request through httpx.

    A shared ``httpx.AsyncClient`` may be injected; otherwise a short-lived
    client is opened per request.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout or get_settings().monitoring.channel_timeout

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT}
        headers.update(kwargs.pop("headers", None) or {})
        try:
            if self.client is not None:
                response = await self.client.request(
                    method, url, headers=headers, timeout=self.timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response

        except httpx.HTTPStatusError as e:
            raise NotificationChannelError(
                f"{self.name} returned HTTP {e.response.status_code}",
                channel=self.name,
                cause=e,
            )
        except httpx.HTTPError as e:
            raise NotificationChannelError(
                f"{self.name} request failed: {type(e).__name__}: {e}",
                channel=self.name,
                cause=e,
            )


# ============================================================================
# HTTP CHANNELS
# ============================================================================

class DiscordChannel(HttpChannel):
    name = "discord"

    def __init__(self, config: DiscordChannelConfig, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        color = ALERT_COLOR_PROBLEM if event_type.is_problem else ALERT_COLOR_OK
        await self._request("POST", self.config.webhook_url, json={
            "embeds": [{
                "title": "Internet Monitor Alert",
                "description": message,
                "color": color,
                "timestamp": TimeHelper.get_utc_now().isoformat(),
                "footer": {"text": "Internet Monitor"},
            }]
        })


class SlackChannel(HttpChannel):
    name = "slack"

    def __init__(self, config: SlackChannelConfig, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._request("POST", self.config.webhook_url, json={"text": message})


class TelegramChannel(HttpChannel):
    name = "telegram"

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, config: TelegramChannelConfig, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            self.API_URL.format(token=self.config.bot_token),
            json={
                "chat_id": self.config.chat_id,
                "text": html.escape(message, quote=False),
                "parse_mode": "HTML",
            },
        )


class WebhookChannel(HttpChannel):
    """User-defined webhook.  The body carries the raw event payload."""

    name = "webhook"

    def __init__(self, config: WebhookChannelConfig, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._request(
            self.config.method,
            self.config.url,
            headers=self.config.headers,
            json={
                "event": event_type.value,
                "message": message,
                "data": payload,
                "timestamp": TimeHelper.get_utc_now().isoformat(),
            },
        )


class SmsChannel(HttpChannel):
    """SMS through the Twilio REST API (form-encoded, basic auth)."""

    name = "sms"

    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(self, config: SmsChannelConfig, **kwargs: Any):
        super().__init__(**kwargs)
        self.config = config

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            self.API_URL.format(sid=self.config.account_sid),
            data={
                "From": self.config.from_number,
                "To": self.config.to_number,
                "Body": message,
            },
            auth=(self.config.account_sid, self.config.auth_token),
        )


# ============================================================================
# EMAIL
# ============================================================================

class EmailChannel(NotificationChannel):
    """SMTP delivery; the blocking smtplib session runs in a worker thread."""

    name = "email"

    def __init__(self, config: EmailChannelConfig, timeout: Optional[float] = None):
        self.config = config
        self.timeout = timeout or get_settings().monitoring.channel_timeout

    def _build_message(self, message: str, event_type: EventType) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"Internet Monitor: {event_type.value}"
        msg["From"] = self.config.sender or self.config.smtp_user or self.config.address
        msg["To"] = self.config.address
        msg.set_content(message)
        return msg

    def _send_blocking(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=self.timeout) as server:
            if self.config.use_tls:
                server.starttls()
            if self.config.smtp_user and self.config.smtp_password:
                server.login(self.config.smtp_user, self.config.smtp_password)
            server.send_message(msg)

    async def send(self, message: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        msg = self._build_message(message, event_type)
        try:
            await asyncio.to_thread(self._send_blocking, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationChannelError(
                f"email delivery to {self.config.address} failed: {e}",
                channel=self.name,
                cause=e,
            )


# ============================================================================
# FACTORY
# ============================================================================

_CHANNEL_TYPES = {
    "discord": DiscordChannel,
    "slack": SlackChannel,
    "telegram": TelegramChannel,
    "webhook": WebhookChannel,
    "sms": SmsChannel,
    "email": EmailChannel,
}


def build_channel(config: ChannelConfig) -> Optional[NotificationChannel]:
    """Instantiate the channel for *config*; None for the browser channel."""
    channel_cls = _CHANNEL_TYPES.get(config.type)
    if channel_cls is None:
        return None
    return channel_cls(config)


def build_channels(notification_settings: NotificationSettings) -> List[NotificationChannel]:
    """All enabled outbound channels of *notification_settings*."""
    channels: List[NotificationChannel] = []
    for config in notification_settings.channels:
        if not config.enabled:
            continue
        channel = build_channel(config)
        if channel is not None:
            channels.append(channel)
    return channels
