import asyncio

from ticket_notifier.celery import celery
from ticket_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=30)
def pending_notification_sweeper_task(self, request_id: str):
    """
    Every 5 minutes: deliver scheduled notifications whose callback never
    arrived, as long as they are inside the send window.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_pending_notification_sweeper(request_id))


async def _async_pending_notification_sweeper(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    # Import here to avoid circular imports
    from ticket_notifier.container import task_container

    try:
        async with task_container() as container:
            result = await container.notification_service.process_pending_notifications()

        logger.info(
            "Pending notification sweep finished",
            processed_count=result.processed,
            outcomes=result.outcomes,
        )
        return {
            "success": not result.errors,
            "processed_count": result.processed,
            "outcomes": result.outcomes,
            "errors": result.errors,
            "request_id": request_id,
        }

    except Exception as e:
        logger.error(
            "Pending notification sweeper task exception",
            error=str(e),
            exc_info=True,
        )
        return {"success": False, "error": str(e), "request_id": request_id}
