"""
Request classification.

Turns a framework-free snapshot of an inbound request into the
(tier, category, role, method) tuple used for policy lookup, plus the
client identity used to build the counter key.
"""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

from warden.core.errors import UnsupportedMethod
from warden.core.policy import Method, Role, Tier

ADMIN_ROLE_NAMES = frozenset({"admin", "administrator"})
PREMIUM_ROLE_NAMES = frozenset({"premium", "pro", "paid"})


class Principal(BaseModel):
    """Authenticated caller as handed over by the authentication layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: str | None = None
    is_admin: bool = False
    is_premium: bool = False
    roles: frozenset[str] = frozenset()

    def has_role(self, name: str) -> bool:
        return name in self.roles


@dataclass(frozen=True)
class RequestContext:
    method: str
    path: str
    client_ip: str
    principal: Principal | None = None


@dataclass(frozen=True)
class Classification:
    tier: Tier
    category: str
    role: Role
    method: Method
    identity: str

    @property
    def counter_key(self) -> str:
        return f"{self.identity}:{self.tier}:{self.category}:{self.method}"


def resolve_role(principal: Principal | None) -> Role:
    """
    Map a principal onto a Role.

    Anything that cannot be positively identified as admin or premium is
    STANDARD, so a missing attribute never grants a larger quota.
    """
    if principal is None:
        return Role.STANDARD

    role = (principal.role or "").lower()
    if role in ADMIN_ROLE_NAMES or principal.is_admin or principal.has_role("admin"):
        return Role.ADMIN
    if role in PREMIUM_ROLE_NAMES or principal.is_premium or principal.has_role("premium"):
        return Role.PREMIUM
    return Role.STANDARD


def normalize_method(method: str) -> Method:
    verb = method.upper()
    # HEAD shares the GET budget
    if verb == "HEAD":
        return Method.GET
    try:
        return Method(verb)
    except ValueError:
        raise UnsupportedMethod(verb) from None


def client_identity(ctx: RequestContext) -> str:
    if ctx.principal is not None:
        return f"user:{ctx.principal.id}"
    return f"ip:{ctx.client_ip}"


class RequestClassifier:
    def classify(self, ctx: RequestContext, tier: Tier, category: str) -> Classification:
        """
        Classify a request mounted under `tier` with the given `category`.

        Raises:
            UnsupportedMethod: If the verb has no quota.
        """
        role = Role.STANDARD if tier == Tier.PUBLIC else resolve_role(ctx.principal)
        return Classification(
            tier=tier,
            category=category,
            role=role,
            method=normalize_method(ctx.method),
            identity=client_identity(ctx),
        )
