from typing import Annotated

from fastapi import APIRouter, Depends, Request

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.container import get_ingestion_service, get_notifier_config
from ticket_notifier.routers.dependencies import verify_callback_token
from ticket_notifier.schemas.ticket_schemas import (
    IngestionStatsResponse,
    TicketIngestRequest,
)
from ticket_notifier.services.ticket_ingestion_service import TicketIngestionService
from ticket_notifier.utils.datetime_utils import utc_now
from ticket_notifier.utils.errors import NotFoundError
from ticket_notifier.utils.responses import ResponseBuilder

tickets_router = APIRouter(dependencies=[Depends(verify_callback_token)])


@tickets_router.post("/ingest")
async def ingest_tickets(
    request: Request,
    body: TicketIngestRequest,
    service: Annotated[TicketIngestionService, Depends(get_ingestion_service)],
    config: Annotated[NotifierConfig, Depends(get_notifier_config)],
):
    """Upsert scraped tickets and (re)schedule their notifications."""
    now = utc_now()
    tickets = [payload.to_ticket(now, config.site_timezone) for payload in body.tickets]
    stats = await service.ingest_tickets(tickets)
    data = IngestionStatsResponse(**vars(stats)).model_dump(by_alias=True)

    if stats.failed:
        return ResponseBuilder.warning(
            request=request,
            data=data,
            message=f"{stats.failed} out of {stats.total} tickets failed to ingest",
            warnings=stats.errors,
        )
    return ResponseBuilder.success(
        request=request,
        data=data,
        message=f"Ingested {stats.total} tickets",
    )


@tickets_router.delete("/{ticket_id}")
async def remove_ticket(
    request: Request,
    ticket_id: str,
    service: Annotated[TicketIngestionService, Depends(get_ingestion_service)],
):
    if not await service.remove_ticket(ticket_id):
        raise NotFoundError(f"Ticket not found: {ticket_id}", "TICKET_NOT_FOUND")
    return ResponseBuilder.success(
        request=request,
        data={"ticketId": ticket_id},
        message="Ticket removed and its notifications cancelled",
    )
