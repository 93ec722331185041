from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from warden.core.enforcer import Outcome, RateLimitDecision


class RateLimitRejected(Exception):
    """Raised by the rate limit dependency to short-circuit a request."""

    def __init__(self, decision: RateLimitDecision):
        super().__init__(decision.outcome)
        self.decision = decision


class AdminAccessDenied(Exception):
    pass


async def rate_limit_rejected_handler(request: Request, exc: RateLimitRejected) -> JSONResponse:
    # X-RateLimit-* headers are added by RequestContextMiddleware
    if exc.decision.outcome == Outcome.RATE_LIMITED:
        headers = {"Retry-After": str(exc.decision.retry_after)}
        return JSONResponse(
            status_code=429,
            content={
                "message": "Too Many Requests",
                "error": "Rate limit exceeded for this endpoint",
            },
            headers=headers,
        )

    return JSONResponse(
        status_code=503,
        content={
            "message": "Service Unavailable",
            "error": "Rate limiting is unavailable for this endpoint",
        },
    )


async def admin_access_denied_handler(request: Request, exc: AdminAccessDenied) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={"error": "Forbidden", "message": "Admin access required."},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitRejected, rate_limit_rejected_handler)
    app.add_exception_handler(AdminAccessDenied, admin_access_denied_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
