from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, Response
from typing import Callable
import uuid
from ticket_notifier.utils.context import set_request_id

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id. Queue callbacks forward the id of the
    notification task so a delivery can be traced from enqueue to send.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        try:
            request_id = str(uuid.UUID(incoming))
        except (ValueError, TypeError):
            # Task ids such as "<ticket>-<type>-v<version>" are accepted verbatim
            request_id = incoming if incoming and len(incoming) <= 128 else str(uuid.uuid4())

        request.state.request_id = request_id

        set_request_id(request_id)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
