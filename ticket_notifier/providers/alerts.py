from typing import Optional

import httpx

from ticket_notifier.services.notifications.messages import build_error_alert
from ticket_notifier.utils.errors import ChannelDeliveryError
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


class DiscordAlertClient:
    """Out-of-band error alerts for operators."""

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    async def send_error(self, error: str, details: Optional[str] = None) -> None:
        if not self.webhook_url:
            logger.warning("Alert webhook not configured, dropping alert", error=error)
            return

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    self.webhook_url, json=build_error_alert(error, details)
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(
                f"Failed to send error alert: {e}", channel="discord_alert"
            ) from e
