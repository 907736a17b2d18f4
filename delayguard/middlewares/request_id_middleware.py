from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, Response
from typing import Callable
import uuid
from delayguard.utils.context import request_id_context

REQUEST_ID_HEADER = "X-Request-ID"

__all__ = ["RequestIDMiddleware", "REQUEST_ID_HEADER"]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an ID and echo it back in the X-Request-ID header.

    A valid UUID sent by the caller is reused so logs can be correlated
    across services; anything else is replaced with a fresh one.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            request_id = str(uuid.UUID(request.headers.get(REQUEST_ID_HEADER)))
        except (ValueError, TypeError):
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        # Scoped to this request so the ID does not leak into the next one
        token = request_id_context.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_context.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
