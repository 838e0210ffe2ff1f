from fastapi import APIRouter, Request

from ticket_notifier.config.settings import settings
from ticket_notifier.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """Basic health check endpoint"""
    return ResponseBuilder.success(
        request=request,
        data={"status": "healthy", "service": settings.NAME, "version": settings.VERSION},
        message="Service is running",
    )
