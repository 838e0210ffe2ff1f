from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ticket_notifier.container import get_notification_service
from ticket_notifier.routers.dependencies import verify_callback_token
from ticket_notifier.schemas.notification_schemas import (
    DeliveryResponse,
    MaintenanceResponse,
    NotificationCallbackRequest,
    SweepResponse,
)
from ticket_notifier.services.notifications.delivery_service import (
    DeliveryOutcome,
    NotificationService,
)
from ticket_notifier.utils.logging import get_logger
from ticket_notifier.utils.responses import ResponseBuilder

notifications_router = APIRouter(dependencies=[Depends(verify_callback_token)])
logger = get_logger()


@notifications_router.post("/callback")
async def notification_callback(
    request: Request,
    body: NotificationCallbackRequest,
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    """
    Called by the task queue when a notification is due.

    A terminal delivery failure is answered with 200 and a warning: the row is
    already marked failed, and a redelivered callback must not start over.
    A missing ticket is answered with 404 so the queue stops retrying.
    """
    outcome = await service.process_scheduled_notification(
        body.ticket_id, body.notification_type
    )
    data = DeliveryResponse(
        ticket_id=body.ticket_id,
        notification_type=body.notification_type,
        outcome=outcome.value,
    ).model_dump(by_alias=True)

    if outcome == DeliveryOutcome.FAILED:
        return ResponseBuilder.warning(
            request=request,
            data=data,
            message="Notification delivery failed after all attempts",
            warnings=["Notification marked as failed"],
        )

    return ResponseBuilder.success(
        request=request,
        data=data,
        message=f"Notification processed: {outcome.value}",
    )


@notifications_router.post("/sweep")
async def sweep_pending_notifications(
    request: Request,
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    """Backfill for callbacks the queue failed to deliver."""
    result = await service.process_pending_notifications()
    data = SweepResponse(
        processed=result.processed, outcomes=result.outcomes, errors=result.errors
    ).model_dump(by_alias=True)

    if result.errors:
        return ResponseBuilder.warning(
            request=request,
            data=data,
            message="Pending notifications processed with errors",
            warnings=result.errors,
        )
    return ResponseBuilder.success(
        request=request,
        data=data,
        message=f"Processed {result.processed} pending notifications",
    )


@notifications_router.post("/retry-failed")
async def retry_failed_notifications(
    request: Request,
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    rearmed = await service.retry_failed_notifications()
    return ResponseBuilder.success(
        request=request,
        data=MaintenanceResponse(affected=rearmed).model_dump(by_alias=True),
        message=f"Re-armed {rearmed} failed notifications",
    )


@notifications_router.post("/cleanup-expired")
async def cleanup_expired_notifications(
    request: Request,
    service: Annotated[NotificationService, Depends(get_notification_service)],
):
    cancelled = await service.cleanup_expired_notifications()
    return ResponseBuilder.success(
        request=request,
        data=MaintenanceResponse(affected=cancelled).model_dump(by_alias=True),
        message=f"Cancelled {cancelled} expired notifications",
    )
