import asyncio

from ticket_notifier.celery import celery
from ticket_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=60)
def expired_notification_cleanup_task(self, request_id: str):
    """Cancel scheduled or failed notifications that are two hours past due."""
    return asyncio.run(_async_expired_notification_cleanup(request_id))


async def _async_expired_notification_cleanup(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    from ticket_notifier.container import task_container

    try:
        async with task_container() as container:
            cancelled = await container.notification_service.cleanup_expired_notifications()

        return {"success": True, "cancelled_count": cancelled, "request_id": request_id}

    except Exception as e:
        logger.error(
            "Expired notification cleanup task exception", error=str(e), exc_info=True
        )
        return {"success": False, "error": str(e), "request_id": request_id}
