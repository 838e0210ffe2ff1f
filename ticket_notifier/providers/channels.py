import asyncio
from abc import ABC, abstractmethod
from typing import Optional
from uuid import uuid4

import httpx
from linebot.v3.messaging import (
    ApiException,
    AsyncApiClient,
    AsyncMessagingApi,
    BroadcastRequest,
    Configuration,
    FlexMessage,
    TextMessage,
)

from ticket_notifier.services.notifications.messages import ChannelMessage
from ticket_notifier.utils.errors import ChannelDeliveryError, LineApplicationError
from ticket_notifier.utils.logging import get_logger

logger = get_logger()


class NotificationChannel(ABC):
    """A delivery mechanism. `send` either returns or raises."""

    name: str = "channel"

    @abstractmethod
    async def send(self, message: ChannelMessage) -> None:
        pass


class LineBroadcastChannel(NotificationChannel):
    """Broadcasts to every follower of the LINE official account."""

    name = "line"

    def __init__(self, channel_access_token: str):
        self.configuration = Configuration(access_token=channel_access_token)

    def _build_message(self, message: ChannelMessage):
        if message.flex_contents:
            return FlexMessage.from_dict(
                {
                    "type": "flex",
                    "altText": message.alt_text,
                    "contents": message.flex_contents,
                }
            )
        return TextMessage(text=message.text, quickReply=None, quoteToken=None)

    async def send(self, message: ChannelMessage) -> None:
        try:
            async with AsyncApiClient(configuration=self.configuration) as api_client:
                line_bot_api = AsyncMessagingApi(api_client)
                await line_bot_api.broadcast(
                    BroadcastRequest(
                        messages=[self._build_message(message)],
                        notificationDisabled=False,
                    ),
                    x_line_retry_key=str(uuid4()),
                )
        except ApiException as e:
            raise LineApplicationError(
                f"LINE broadcast failed with status {e.status}: {e.body}"
            ) from e
        except (asyncio.TimeoutError, OSError) as e:
            raise LineApplicationError(f"LINE broadcast failed: {e}") from e

        logger.info("LINE broadcast sent", alt_text=message.alt_text)


class DiscordWebhookChannel(NotificationChannel):
    """Posts the message as an embed to a Discord webhook."""

    name = "discord"

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    async def send(self, message: ChannelMessage) -> None:
        body = {"embeds": message.embeds} if message.embeds else {"content": message.text}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(self.webhook_url, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ChannelDeliveryError(
                f"Discord webhook returned {e.response.status_code}",
                channel=self.name,
            ) from e
        except httpx.RequestError as e:
            raise ChannelDeliveryError(
                f"Discord webhook request failed: {e}", channel=self.name
            ) from e

        logger.info("Discord webhook message sent", alt_text=message.alt_text)
