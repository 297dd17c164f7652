"""
Operator alerts for worker restarts.

Every restart posts a warning to the webhook; after three warnings in a row
the next restart posts a critical alert instead and the cycle starts over.
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

CRITICAL_THRESHOLD = 3


class Notifier(Protocol):
    async def deliver(self, content: str) -> bool: ...


class WebhookNotifier:
    """Posts ``{"content": ...}`` to a Discord-style webhook.

    The webhook answers 204 No Content on success; anything else, including
    transport errors, is a failed delivery. Failures are logged, never raised.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def deliver(self, content: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.url, json={"content": content})
        except httpx.TimeoutException:
            logger.error("Alert delivery timed out")
            return False
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Error sending alert: {e}")
            return False

        if response.status_code != httpx.codes.NO_CONTENT:
            logger.error(f"Failed to send alert, status code: {response.status_code}")
            return False
        return True


@dataclass
class AlertState:
    """Alert texts and how many warnings have gone out since the last critical."""

    warning_text: str
    critical_text: str
    consecutive_failure_count: int = 0


def get_hostname() -> str:
    try:
        return socket.gethostname()
    except OSError as e:
        logger.warning(f"Error getting hostname: {e}")
        return "unknown"


class AlertThrottle:
    """Chooses warning or critical severity and delivers the alert."""

    def __init__(
        self,
        state: AlertState,
        notifier: Notifier,
        hostname: Optional[str] = None,
        critical_threshold: int = CRITICAL_THRESHOLD,
    ):
        self.state = state
        self.notifier = notifier
        self.hostname = hostname or get_hostname()
        self.critical_threshold = critical_threshold

    def compose(self) -> tuple[str, bool]:
        """Build the next message. Returns (message, is_critical)."""
        if self.state.consecutive_failure_count >= self.critical_threshold:
            return f"hostname: {self.hostname} - {self.state.critical_text}", True
        ordinal = self.state.consecutive_failure_count + 1
        return f"hostname: {self.hostname} - {self.state.warning_text} [{ordinal}]", False

    async def notify(self) -> bool:
        """Send the next alert in the warning/critical cycle.

        State advances whether or not the delivery succeeded.
        """
        message, critical = self.compose()
        if critical:
            logger.warning(f"Sending critical alert: {message}")
        else:
            logger.info(f"Sending warning alert: {message}")

        try:
            delivered = await self.notifier.deliver(message)
        except Exception:
            logger.exception("Error delivering alert")
            delivered = False

        if critical:
            self.state.consecutive_failure_count = 0
        else:
            self.state.consecutive_failure_count += 1

        if not delivered:
            logger.warning("Alert was not delivered; continuing")
        return delivered
