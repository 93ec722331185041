"""
Minimal API key authentication.

Authentication proper lives outside this service; this module only maps an
`X-API-Key` header to a Principal using the configured key table, which is
enough for the rate limiter to resolve identities and roles.
"""

from fastapi import HTTPException, Request, status

from warden.core.classifier import Principal

API_KEY_HEADER = "X-API-Key"


def resolve_principal(request: Request) -> Principal | None:
    """Look up the caller once per request and cache it on request.state."""
    if hasattr(request.state, "principal"):
        return request.state.principal

    principals: dict[str, Principal] = getattr(request.app.state, "principals", {})
    api_key = request.headers.get(API_KEY_HEADER)
    principal = principals.get(api_key) if api_key else None

    request.state.principal = principal
    return principal


async def require_principal(request: Request) -> Principal:
    principal = resolve_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthenticated.",
        )
    return principal
