import asyncio

from ticket_notifier.celery import celery
from ticket_notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=120)
def ticket_summary_sender_task(self, request_id: str):
    return asyncio.run(_async_ticket_summary_sender(self, request_id))


async def _async_ticket_summary_sender(task, request_id: str):
    logger = get_logger().bind(request_id=request_id)

    from ticket_notifier.container import task_container

    try:
        async with task_container() as container:
            ticket_count = await container.notification_service.send_ticket_summary()

        return {"success": True, "ticket_count": ticket_count, "request_id": request_id}

    except Exception as e:
        logger.error("Ticket summary task exception", error=str(e), exc_info=True)
        if task.request.retries < task.max_retries:
            raise task.retry(exc=e)
        return {"success": False, "error": str(e), "request_id": request_id}
