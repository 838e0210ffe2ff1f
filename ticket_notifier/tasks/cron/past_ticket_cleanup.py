import asyncio

from ticket_notifier.celery import celery
from ticket_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=300)
def past_ticket_cleanup_task(self, request_id: str):
    """Daily retention cleanup of tickets for matches long past."""
    return asyncio.run(_async_past_ticket_cleanup(request_id))


async def _async_past_ticket_cleanup(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    from ticket_notifier.container import task_container

    try:
        async with task_container() as container:
            removed = await container.ingestion_service.cleanup_past_tickets()
            retention_days = container.config.retention_days

        logger.info(
            "Past ticket cleanup finished",
            removed_count=removed,
            retention_days=retention_days,
        )
        return {"success": True, "removed_count": removed, "request_id": request_id}

    except Exception as e:
        logger.error("Past ticket cleanup task exception", error=str(e), exc_info=True)
        return {"success": False, "error": str(e), "request_id": request_id}
