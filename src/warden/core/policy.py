"""
Static rate limit policy.

Limits are tiered: anonymous traffic gets the smallest quotas, authenticated
users get more, and premium/admin roles get progressively larger budgets.
Each tier is further split into categories so that expensive endpoints
(uploads, heavy reports) are throttled independently of cheap reads.

The policy is loaded once, validated exhaustively, and flattened into a
lookup table keyed by PolicyKey.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, PositiveInt, ValidationError

from warden.core.errors import ConfigurationError, PolicyLookupError


class Tier(StrEnum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


class Role(StrEnum):
    STANDARD = "standard"
    PREMIUM = "premium"
    ADMIN = "admin"


class Method(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


@dataclass(frozen=True)
class PolicyKey:
    tier: Tier
    category: str
    role: Role | None
    method: Method


@dataclass(frozen=True)
class RouteDeclaration:
    """A (tier, category) scope bound to a route, with the verbs it serves."""

    tier: Tier
    category: str
    methods: frozenset[str]
    path: str = ""


class MethodLimits(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    get: PositiveInt
    post: PositiveInt
    put: PositiveInt
    patch: PositiveInt
    delete: PositiveInt

    def for_method(self, method: Method) -> int:
        return getattr(self, method.value.lower())


class RoleLimits(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    standard: MethodLimits
    premium: MethodLimits
    admin: MethodLimits


class PolicyDocument(BaseModel):
    """Nested shape of a policy file. Every method and role is required."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    public: dict[str, MethodLimits]
    authenticated: dict[str, RoleLimits]
    admin: dict[str, MethodLimits]


def _limits(get: int, post: int, put: int, patch: int, delete: int) -> dict[str, int]:
    return {"get": get, "post": post, "put": put, "patch": patch, "delete": delete}


DEFAULT_LIMITS: dict[str, Any] = {
    "public": {
        "auth": _limits(10, 5, 3, 3, 2),
        "general": _limits(60, 10, 5, 5, 3),
        "search": _limits(30, 5, 2, 2, 1),
        "upload": _limits(10, 3, 2, 2, 1),
    },
    "authenticated": {
        "general": {
            "standard": _limits(200, 50, 30, 30, 20),
            "premium": _limits(500, 100, 60, 60, 40),
            "admin": _limits(1000, 200, 100, 100, 50),
        },
        "search": {
            "standard": _limits(100, 20, 10, 10, 5),
            "premium": _limits(300, 50, 25, 25, 15),
            "admin": _limits(500, 100, 50, 50, 25),
        },
        "upload": {
            "standard": _limits(50, 10, 5, 5, 3),
            "premium": _limits(100, 25, 15, 15, 10),
            "admin": _limits(200, 50, 30, 30, 20),
        },
        "heavy": {
            "standard": _limits(20, 5, 3, 3, 2),
            "premium": _limits(50, 15, 10, 10, 5),
            "admin": _limits(100, 30, 20, 20, 10),
        },
    },
    "admin": {
        "general": _limits(300, 50, 30, 30, 20),
        "users": _limits(100, 20, 15, 15, 10),
        "settings": _limits(50, 10, 5, 5, 3),
        "logs": _limits(200, 20, 10, 10, 5),
        "reports": _limits(50, 10, 5, 5, 3),
    },
}


class RateLimitPolicy:
    """
    Immutable lookup table of (tier, category, role, method) -> limit.

    Role is only part of the key for the AUTHENTICATED tier; lookups for
    the other tiers ignore it.
    """

    def __init__(self, limits: Mapping[PolicyKey, int]):
        self._limits: dict[PolicyKey, int] = dict(limits)
        self._categories: dict[Tier, frozenset[str]] = {
            tier: frozenset(k.category for k in self._limits if k.tier == tier)
            for tier in Tier
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RateLimitPolicy":
        try:
            document = PolicyDocument.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid rate limit policy: {exc}") from exc
        return cls.from_document(document)

    @classmethod
    def from_file(cls, path: Path) -> "RateLimitPolicy":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read rate limit policy {path}: {exc}") from exc

        try:
            document = PolicyDocument.model_validate_json(text)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid rate limit policy {path}: {exc}") from exc
        return cls.from_document(document)

    @classmethod
    def from_document(cls, document: PolicyDocument) -> "RateLimitPolicy":
        limits: dict[PolicyKey, int] = {}
        for category, method_limits in document.public.items():
            for method in Method:
                key = PolicyKey(Tier.PUBLIC, category, None, method)
                limits[key] = method_limits.for_method(method)

        for category, role_limits in document.authenticated.items():
            for role in Role:
                method_limits = getattr(role_limits, role.value)
                for method in Method:
                    key = PolicyKey(Tier.AUTHENTICATED, category, role, method)
                    limits[key] = method_limits.for_method(method)

        for category, method_limits in document.admin.items():
            for method in Method:
                key = PolicyKey(Tier.ADMIN, category, None, method)
                limits[key] = method_limits.for_method(method)

        return cls(limits)

    @classmethod
    def default(cls) -> "RateLimitPolicy":
        return cls.from_mapping(DEFAULT_LIMITS)

    def categories(self, tier: Tier) -> frozenset[str]:
        return self._categories[tier]

    def limit_for(
        self,
        tier: Tier,
        category: str,
        role: Role | None,
        method: Method,
    ) -> int:
        key = PolicyKey(
            tier=tier,
            category=category,
            role=(role or Role.STANDARD) if tier == Tier.AUTHENTICATED else None,
            method=method,
        )
        try:
            return self._limits[key]
        except KeyError:
            raise PolicyLookupError(
                f"No rate limit configured for {tier}/{category}/{role}/{method}"
            ) from None

    def validate_routes(self, declarations: Iterable[RouteDeclaration]) -> None:
        """
        Check that every declared route resolves to a limit.

        Raises:
            ConfigurationError: on the first category unknown to its tier
                or verb outside the supported methods.
        """
        for declaration in declarations:
            where = f" (route {declaration.path})" if declaration.path else ""
            if declaration.category not in self.categories(declaration.tier):
                raise ConfigurationError(
                    f"Unknown rate limit category {declaration.category!r} "
                    f"for tier {declaration.tier}{where}"
                )
            for verb in declaration.methods:
                verb = verb.upper()
                if verb == "HEAD":
                    continue
                if verb not in Method.__members__:
                    raise ConfigurationError(
                        f"HTTP method {verb} has no rate limit{where}"
                    )
