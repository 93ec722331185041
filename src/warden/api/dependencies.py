from collections.abc import Iterable, Iterator

from fastapi import FastAPI, Request
from fastapi.dependencies.models import Dependant
from fastapi.routing import APIRoute
from starlette.routing import BaseRoute

from warden.api.auth import resolve_principal
from warden.api.errors import AdminAccessDenied, RateLimitRejected
from warden.core.classifier import Principal, RequestContext, resolve_role
from warden.core.enforcer import RateLimitDecision
from warden.core.policy import Role, RouteDeclaration, Tier

DECISION_STATE_KEY = "rate_limit_decision"


def build_request_context(request: Request, principal: Principal | None) -> RequestContext:
    return RequestContext(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else "unknown",
        principal=principal,
    )


class RateLimit:
    """
    Route dependency scoping a route (or router) to a tier and category.

        router = APIRouter(dependencies=[Depends(RateLimit(Tier.PUBLIC, "auth"))])

    The decision is left on request.state so RequestContextMiddleware can
    attach X-RateLimit-* headers to whatever response the request ends
    with. Rejected requests raise RateLimitRejected.
    """

    def __init__(self, tier: Tier, category: str = "general"):
        self.tier = Tier(tier)
        self.category = category

    def __repr__(self) -> str:
        return f"RateLimit({self.tier}, {self.category!r})"

    async def __call__(self, request: Request) -> RateLimitDecision:
        principal = resolve_principal(request)
        if self.tier == Tier.ADMIN and resolve_role(principal) != Role.ADMIN:
            raise AdminAccessDenied()

        decision = await request.app.state.enforcer.enforce(
            build_request_context(request, principal),
            self.tier,
            self.category,
        )
        setattr(request.state, DECISION_STATE_KEY, decision)

        if not decision.allowed:
            raise RateLimitRejected(decision)
        return decision


def _walk(dependant: Dependant) -> Iterator[Dependant]:
    for dependency in dependant.dependencies:
        yield dependency
        yield from _walk(dependency)


def _scopes(calls: Iterable[object]) -> list[RateLimit]:
    return [call for call in calls if isinstance(call, RateLimit)]


def _collect(
    routes: Iterable[BaseRoute],
    prefix: str,
    inherited: list[RateLimit],
) -> Iterator[RouteDeclaration]:
    for route in routes:
        if isinstance(route, APIRoute):
            scopes = inherited + _scopes(d.call for d in _walk(route.dependant))
            for scope in scopes:
                yield RouteDeclaration(
                    tier=scope.tier,
                    category=scope.category,
                    methods=frozenset(route.methods),
                    path=prefix + route.path,
                )
            continue

        # Routers included on newer FastAPI releases stay wrapped
        # instead of being copied onto the parent.
        included = getattr(route, "original_router", None)
        if included is not None:
            context = getattr(route, "include_context", None)
            extra = _scopes(d.dependency for d in getattr(context, "dependencies", []))
            yield from _collect(
                included.routes,
                prefix + getattr(context, "prefix", ""),
                inherited + extra,
            )
            continue

        # Mounted sub-applications and routers
        nested = getattr(route, "routes", None)
        if nested:
            yield from _collect(nested, prefix + getattr(route, "path", ""), inherited)


def declared_rate_limits(app: FastAPI) -> list[RouteDeclaration]:
    """Collect the (tier, category, methods) scope of every rate limited route."""
    return list(_collect(app.routes, "", []))
