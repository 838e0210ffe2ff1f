from typing import List, Optional

from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from pydantic import ValidationError
import traceback
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class AuthenticationError(Exception):
    """Raised when a callback arrives without the shared token."""

    def __init__(
        self, message: str = "Authentication failed", error_code: str = "AUTH_ERROR"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(Exception):
    """Custom exception for resource not found errors."""

    def __init__(
        self, message: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class TicketNotFoundError(NotFoundError):
    def __init__(self, ticket_id: str):
        super().__init__(f"Ticket not found: {ticket_id}", "TICKET_NOT_FOUND")
        self.ticket_id = ticket_id


class ConfigurationError(Exception):
    """A required setting (callback URL, channel token) is missing."""

    def __init__(self, message: str, error_code: str = "CONFIGURATION_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ConcurrencyConflictError(Exception):
    """The stored ticket version no longer matches the one the caller read."""

    def __init__(self, message: str, error_code: str = "CONCURRENCY_CONFLICT"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class TaskQueueError(Exception):
    """Enqueue or dequeue against the task queue failed."""

    def __init__(self, message: str, error_code: str = "TASK_QUEUE_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotificationSchedulingError(Exception):
    """
    Aggregate error raised after every timing of a ticket was attempted and at
    least one could not be enqueued. The successful ones are already persisted.
    """

    def __init__(
        self,
        failed_count: int,
        total_count: int,
        errors: Optional[List[Exception]] = None,
        error_code: str = "NOTIFICATION_SCHEDULING_ERROR",
    ):
        message = (
            f"{failed_count} out of {total_count} notifications failed to schedule"
        )
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.failed_count = failed_count
        self.total_count = total_count
        self.errors = errors or []


class NotificationCancellationError(Exception):
    """One or more queued tasks could not be cancelled."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Exception]] = None,
        error_code: str = "NOTIFICATION_CANCELLATION_ERROR",
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.errors = errors or []


class ChannelDeliveryError(Exception):
    """A delivery channel rejected or failed to deliver a message."""

    def __init__(
        self, message: str, channel: str = "unknown", error_code: str = "CHANNEL_ERROR"
    ):
        super().__init__(message)
        self.message = message
        self.channel = channel
        self.error_code = error_code


class LineApplicationError(ChannelDeliveryError):
    """Custom exception for LINE application errors."""

    def __init__(self, message: str, error_code: str = "LINE_ERROR"):
        super().__init__(message, channel="line", error_code=error_code)


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")

        formatted_errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            formatted_errors.append(
                {
                    "field": field_path,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=formatted_errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(ValidationError)
    async def pydantic_validation_exception_handler(
        request: Request, exc: ValidationError
    ):
        logger.error(f"Pydantic Validation Error: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Data validation failed",
            error_code="INTERNAL_VALIDATION_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(DatabaseError)
    async def database_exception_handler(request: Request, exc: DatabaseError):
        logger.error(f"Database Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "DATABASE_ERROR"},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Don't expose internal database errors to users
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(ConcurrencyConflictError)
    async def concurrency_conflict_handler(
        request: Request, exc: ConcurrencyConflictError
    ):
        logger.warning(f"Concurrency Conflict: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_409_CONFLICT,
            meta={"error_type": "CONCURRENCY_ERROR"},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(
        request: Request, exc: ConfigurationError
    ):
        logger.error(f"Configuration Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "CONFIGURATION_ERROR"},
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_exception_handler(
        request: Request, exc: AuthenticationError
    ):
        logger.error(f"Authentication Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code="UNAUTHORIZED",
            status_code=status.HTTP_401_UNAUTHORIZED,
            meta={"error_type": "AUTHENTICATION_ERROR"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_exception_handler(request: Request, exc: NotFoundError):
        logger.error(f"Not Found Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            meta={"error_type": "NOT_FOUND_ERROR"},
        )

    @app.exception_handler(NotificationSchedulingError)
    async def scheduling_exception_handler(
        request: Request, exc: NotificationSchedulingError
    ):
        logger.error(f"Notification Scheduling Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={
                "error_type": "SCHEDULING_ERROR",
                "failed_count": exc.failed_count,
                "total_count": exc.total_count,
            },
        )

    @app.exception_handler(NotificationCancellationError)
    async def cancellation_exception_handler(
        request: Request, exc: NotificationCancellationError
    ):
        logger.error(f"Notification Cancellation Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "CANCELLATION_ERROR"},
        )

    @app.exception_handler(TaskQueueError)
    async def task_queue_exception_handler(request: Request, exc: TaskQueueError):
        logger.error(f"Task Queue Error: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "TASK_QUEUE_ERROR"},
        )

    @app.exception_handler(ChannelDeliveryError)
    async def channel_delivery_exception_handler(
        request: Request, exc: ChannelDeliveryError
    ):
        logger.error(f"Channel Delivery Error ({exc.channel}): {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status.HTTP_502_BAD_GATEWAY,
            meta={"error_type": "CHANNEL_ERROR", "channel": exc.channel},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.error(f"Value Error: {str(exc)}")

        return ResponseBuilder.error(
            request=request,
            message=str(exc),
            error_code="VALUE_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            meta={"error_type": "VALUE_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
