from fastapi import APIRouter

from ticket_notifier.routers.health import health_router
from ticket_notifier.routers.notifications import notifications_router
from ticket_notifier.routers.tickets import tickets_router

main_router = APIRouter()
main_router.include_router(
    notifications_router, prefix="/notifications", tags=["notifications"]
)
main_router.include_router(tickets_router, prefix="/tickets", tags=["tickets"])
main_router.include_router(health_router, prefix="/health", tags=["health"])
