"""
ORACLE WATCHER — Alert Channels
Delivery backends for operator alerts:
- WebhookChannel:  wallet app push-send endpoint (broadcast to admins)
- TelegramChannel: optional bot message to an operator chat
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
from telegram import Bot
from telegram.helpers import escape_markdown

from oracle_watcher.config.settings import AlertSettings, get_settings
from oracle_watcher.data.models import AlertPayload, Severity
from oracle_watcher.utils.logger import get_logger

logger = get_logger("alert_channels")

SEVERITY_EMOJI = {
    Severity.WARNING: "⚠️",
    Severity.CRITICAL: "🚨",
}


class AlertChannel(ABC):
    name: str = "channel"

    @abstractmethod
    async def deliver(self, alert: AlertPayload) -> bool:
        """Deliver one alert; False on any failure."""

    async def close(self) -> None:
        pass


def build_push_body(alert: AlertPayload) -> Dict[str, Any]:
    """Broadcast body understood by the wallet app push-send endpoint."""
    return {
        "broadcast": True,
        "title": alert.title,
        "body": alert.body,
        "type": "security" if alert.severity == Severity.CRITICAL else "system",
        "data": {
            **alert.data,
            "alertType": alert.type.value,
            "severity": alert.severity.value,
            "url": "/admin",
        },
    }


class WebhookChannel(AlertChannel):
    """POST {app_url}{push_path} with the admin bearer token."""

    name = "webhook"

    def __init__(self, settings: Optional[AlertSettings] = None):
        self.settings = settings or get_settings().alerts
        self.url = f"{self.settings.app_url.rstrip('/')}{self.settings.push_path}"
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.alert_timeout_seconds),
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.settings.app_admin_token}",
                },
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def deliver(self, alert: AlertPayload) -> bool:
        try:
            session = await self._get_session()
            async with session.post(self.url, json=build_push_body(alert)) as resp:
                if 200 <= resp.status < 300:
                    return True
                text = await resp.text()
                logger.error("alert_webhook_rejected", status=resp.status, error=text[:200])
                return False
        except Exception as e:
            logger.error("alert_webhook_error", error=str(e) or type(e).__name__)
            return False


def _md(value: Any) -> str:
    return escape_markdown(str(value), version=1)


def format_alert_message(alert: AlertPayload) -> str:
    """Legacy Markdown; every dynamic part is escaped so entities stay balanced."""
    emoji = SEVERITY_EMOJI.get(alert.severity, "📊")
    message = (
        f"{emoji} *{_md(alert.title)}*\n"
        f"{'━' * 28}\n"
        f"{_md(alert.body)}\n"
    )
    details = {k: v for k, v in alert.data.items() if v is not None}
    if details:
        message += "\n" + "\n".join(f"• *{_md(k)}:* {_md(v)}" for k, v in details.items()) + "\n"
    message += f"{'━' * 28}\n{_md(alert.type.value)} · {_md(alert.severity.value)}"
    return message


class TelegramChannel(AlertChannel):
    """Bot.send_message to the configured operator chat."""

    name = "telegram"

    def __init__(self, settings: Optional[AlertSettings] = None, bot: Optional[Bot] = None):
        self.settings = settings or get_settings().alerts
        self.chat_id = self.settings.telegram_chat_id
        self._bot = bot or Bot(token=self.settings.telegram_bot_token)

    @classmethod
    def enabled(cls, settings: AlertSettings) -> bool:
        return bool(settings.telegram_bot_token and settings.telegram_chat_id)

    async def close(self) -> None:
        try:
            await self._bot.shutdown()
        except Exception as e:
            logger.warning("telegram_shutdown_error", error=str(e))

    async def deliver(self, alert: AlertPayload) -> bool:
        try:
            await self._bot.send_message(
                chat_id=self.chat_id,
                text=format_alert_message(alert),
                parse_mode="Markdown",
            )
            return True
        except Exception as e:
            logger.error("telegram_send_error", error=str(e) or type(e).__name__)
            return False
