"""
Telegram notification channel for fleet alerts.

Provides instant messaging notifications via Telegram bot API with:
- Bot token and chat id from environment variables
- Markdown message formatting per severity
- Rate limiting and error handling
"""

import asyncio
import os
import time
from typing import Optional, Union

import aiohttp
import structlog

from fleetd.alerts.models import Alert, AlertSeverity
from .base import Notifier

logger = structlog.get_logger(__name__)


class TelegramNotifier(Notifier):
    """
    Telegram notification channel for fleet alerts.

    Handles delivery via the Telegram bot API with formatting, rate
    limiting, and error handling. Alerts below ``min_severity`` (high by
    default) are skipped.
    """

    def __init__(self,
                 bot_token: Optional[str] = None,
                 chat_id: Optional[str] = None,
                 min_severity: Union[AlertSeverity, str] = AlertSeverity.HIGH,
                 rate_limit_per_minute: int = 30,
                 timeout_seconds: float = 10.0):
        """
        Initialize Telegram notification channel.

        Args:
            bot_token: Telegram bot token (defaults to TELEGRAM_BOT_TOKEN env var)
            chat_id: Telegram chat ID (defaults to TELEGRAM_CHAT_ID env var)
            min_severity: Lowest severity that is delivered
            rate_limit_per_minute: Rate limit for message sending
            timeout_seconds: Request timeout
        """
        super().__init__(min_severity)
        self.bot_token = bot_token or os.getenv('TELEGRAM_BOT_TOKEN')
        self.chat_id = chat_id or os.getenv('TELEGRAM_CHAT_ID')

        if not self.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN environment variable is required")
        if not self.chat_id:
            raise ValueError("TELEGRAM_CHAT_ID environment variable is required")

        self.rate_limit_per_minute = rate_limit_per_minute
        self.timeout_seconds = timeout_seconds
        self.api_url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"

        self._sent_messages = []

        logger.info("Telegram notifier initialized",
                    chat_id=self.chat_id,
                    min_severity=self.min_severity.value,
                    rate_limit=rate_limit_per_minute)

    def _check_rate_limit(self) -> bool:
        """Check if we're within rate limits."""
        cutoff_time = time.time() - 60
        self._sent_messages = [t for t in self._sent_messages if t > cutoff_time]
        return len(self._sent_messages) < self.rate_limit_per_minute

    def format_alert_message(self, alert: Alert) -> str:
        """Format alert message for Telegram."""
        severity_emojis = {
            'low': '🟢',
            'medium': '🟡',
            'high': '🟠',
            'critical': '🔴'
        }
        emoji = severity_emojis.get(alert.severity.value, '🔔')
        title = alert.type.value.replace('_', ' ').upper()

        lines = [
            f"{emoji} *{title}*",
            "",
            f"🚚 *Plate:* {alert.plate}",
            f"⚡ *Severity:* {alert.severity.value.upper()}",
            f"💬 *Details:* {alert.details}",
            f"📍 *Location:* {alert.location or 'unknown'}",
            f"🏎 *Speed:* {alert.speed:g} km/h",
            f"⏰ *Time:* {alert.timestamp}",
        ]
        if alert.driver:
            lines.append(f"👤 *Driver:* {alert.driver}")
        if alert.contract:
            lines.append(f"📄 *Contract:* {alert.contract}")
        return "\n".join(lines)

    async def send_alert(self, alert: Alert) -> bool:
        """
        Send alert via Telegram.

        Returns:
            True if successful, False otherwise
        """
        try:
            if not self._check_rate_limit():
                logger.warning("Rate limit exceeded for Telegram notifications",
                               alert_id=alert.id)
                return False

            data = {
                'chat_id': self.chat_id,
                'text': self.format_alert_message(alert),
                'parse_mode': 'Markdown',
                'disable_web_page_preview': True
            }

            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    json=data,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status == 200:
                        response_data = await response.json()
                        if response_data.get('ok'):
                            self._sent_messages.append(time.time())
                            logger.info("Telegram alert sent successfully",
                                        alert_id=alert.id,
                                        severity=alert.severity.value)
                            return True
                        logger.error("Telegram API returned error",
                                     alert_id=alert.id,
                                     error=response_data.get('description'))
                        return False

                    error_text = await response.text()
                    logger.error("Failed to send Telegram alert",
                                 alert_id=alert.id,
                                 status_code=response.status,
                                 error=error_text)
                    return False

        except asyncio.TimeoutError:
            logger.error("Telegram notification timeout", alert_id=alert.id)
            return False
        except aiohttp.ClientError as e:
            logger.error("Error sending Telegram alert",
                         alert_id=alert.id,
                         error=str(e))
            return False
