import asyncio

from ticket_notifier.celery import celery
from ticket_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def failed_notification_retrier_task(self, request_id: str):
    """Re-arm failed notifications that are past their cooldown and not expired."""
    return asyncio.run(_async_failed_notification_retrier(request_id))


async def _async_failed_notification_retrier(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    from ticket_notifier.container import task_container

    try:
        async with task_container() as container:
            rearmed = await container.notification_service.retry_failed_notifications()
            # Re-armed rows are due already; deliver them in the same run
            result = await container.notification_service.process_pending_notifications()

        return {
            "success": True,
            "rearmed_count": rearmed,
            "processed_count": result.processed,
            "request_id": request_id,
        }

    except Exception as e:
        logger.error(
            "Failed notification retrier task exception", error=str(e), exc_info=True
        )
        return {"success": False, "error": str(e), "request_id": request_id}
