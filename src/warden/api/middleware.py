import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from warden.api.dependencies import DECISION_STATE_KEY

REQUEST_ID_HEADER = "X-Request-Id"


def _valid_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a request id and binds it, together with the
    client, path and method, into the structlog context.

    A valid UUID sent by the client is reused; anything else is replaced.
    Requests counted by a RateLimit dependency get X-RateLimit-* headers on
    the final response, whether the handler succeeded or raised.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER)
        request_id = incoming if _valid_uuid(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client=request.client.host if request.client else "unknown",
            path=request.url.path,
            method=request.method,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        decision = getattr(request.state, DECISION_STATE_KEY, None)
        if decision is not None and request.app.state.settings.add_headers:
            response.headers.update(decision.headers())
        return response
