"""Outbound alert channels.

Fired when a feed page exhausts its retries. Delivery is best-effort:
channels never raise, they log and report a failed DeliveryResult.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import httpx

from ingestion.models import format_rfc3339

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class AlertChannelType(str, Enum):
    WEBHOOK = "webhook"


@dataclass
class FetchFailureAlert:
    """A feed fetch that failed after all retry attempts."""
    target_id: str  # "<appId>-<country>"
    error_type: str  # http_status_<code> | network_timeout | network_error
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.target_id,
            "timestamp": format_rfc3339(self.timestamp.replace(microsecond=0)),
            "errorType": self.error_type,
        }


@dataclass
class DeliveryResult:
    """Result of an alert delivery attempt."""
    success: bool
    channel: AlertChannelType
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for alert channels."""

    channel_type: AlertChannelType

    @abstractmethod
    async def send(self, alert: FetchFailureAlert) -> DeliveryResult:
        """Send an alert through this channel. Must not raise."""
        ...


# ─── Webhook Channel ──────────────────────────────────────────

class WebhookAlertChannel(BaseChannel):
    """POST fetch-failure alerts as JSON to a configured URL.

    An empty URL disables the channel: send() returns without a request.
    A shared httpx.AsyncClient may be injected; otherwise a short-lived
    client is opened per alert.
    """

    channel_type = AlertChannelType.WEBHOOK

    def __init__(self, url: str = "", client: Optional[httpx.AsyncClient] = None, timeout: float = 5.0):
        self.url = url or ""
        self._client = client
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, alert: FetchFailureAlert) -> DeliveryResult:
        """Send webhook alert."""
        if not self.enabled:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient="",
                error="disabled",
            )

        payload = alert.to_payload()
        headers = {"Content-Type": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Webhook alert failed for {alert.target_id}: {e}")
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=self.url,
                error=str(e) or type(e).__name__,
            )

        if response.is_error:
            # 4xx/5xx from the receiver does not fail the caller
            logger.warning(
                f"Webhook alert for {alert.target_id} answered HTTP {response.status_code}"
            )
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=self.url,
                error=f"HTTP {response.status_code}",
            )

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=self.url,
            message=f"Webhook delivered (HTTP {response.status_code})",
            delivered_at=datetime.now(timezone.utc).isoformat(),
        )
