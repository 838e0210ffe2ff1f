import asyncio
from typing import Any, Dict, Optional

import httpx

from ticket_notifier.celery import celery
from ticket_notifier.config.settings import settings
from ticket_notifier.utils.logging import get_logger

CALLBACK_TOKEN_HEADER = "X-Callback-Token"
REQUEST_ID_HEADER = "X-Request-ID"


class CallbackServerError(Exception):
    """The callback endpoint answered with a 5xx status."""


@celery.task(bind=True, max_retries=5, default_retry_delay=30)
def notification_callback_task(
    self, request_id: str, target_url: str, payload: Dict[str, Any]
):
    """
    Fires when a scheduled notification is due and hands it back to the API.

    Network errors and 5xx answers are retried; a 4xx answer (e.g. the ticket
    was deleted) is final.

    Args:
        request_id: The task id, forwarded as the request id for tracing
        target_url: Notification callback endpoint
        payload: `{"ticketId": ..., "notificationType": ...}`
    """
    return asyncio.run(
        _async_notification_callback(self, request_id, target_url, payload)
    )


async def _async_notification_callback(
    task,
    request_id: str,
    target_url: str,
    payload: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    logger = get_logger().bind(request_id=request_id)

    headers = {REQUEST_ID_HEADER: request_id}
    if settings.CALLBACK_AUTH_TOKEN:
        headers[CALLBACK_TOKEN_HEADER] = settings.CALLBACK_AUTH_TOKEN

    try:
        async with httpx.AsyncClient(timeout=60.0, transport=transport) as client:
            response = await client.post(target_url, json=payload, headers=headers)
    except httpx.RequestError as e:
        logger.warning(
            "Notification callback request failed, retrying",
            target_url=target_url,
            retries=task.request.retries,
            error=str(e),
        )
        raise task.retry(exc=e)

    if response.status_code >= 500:
        logger.warning(
            "Notification callback returned server error, retrying",
            status_code=response.status_code,
            retries=task.request.retries,
        )
        raise task.retry(
            exc=CallbackServerError(
                f"Callback returned {response.status_code}: {response.text[:200]}"
            )
        )

    if response.status_code >= 400:
        logger.error(
            "Notification callback rejected",
            status_code=response.status_code,
            payload=payload,
            body=response.text[:500],
        )
        return {
            "success": False,
            "status_code": response.status_code,
            "request_id": request_id,
        }

    logger.info("Notification callback delivered", payload=payload)
    return {
        "success": True,
        "status_code": response.status_code,
        "request_id": request_id,
    }
