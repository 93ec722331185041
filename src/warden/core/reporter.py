import ipaddress
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from warden.core.classifier import Classification, RequestContext

if TYPE_CHECKING:
    from warden.core.enforcer import RateLimitDecision


def anonymize_ip(address: str) -> str:
    """
    Drop the host part of an address: the last IPv4 octet is zeroed and
    IPv6 addresses are truncated to their /48 prefix.
    """
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return "unknown"
    prefix = 24 if ip.version == 4 else 48
    return str(ipaddress.ip_network(f"{ip}/{prefix}", strict=False).network_address)


class ViolationReporter:
    """
    Writes one structured record per denied request.

    Reporting never raises: a broken log sink must not turn a 429 into
    a 500.
    """

    EVENT = "rate_limit_exceeded"

    def __init__(self, enabled: bool = True, logger: Any = None):
        self.enabled = enabled
        self._logger = logger or structlog.get_logger("warden.violations")

    def report(
        self,
        ctx: RequestContext,
        classification: Classification,
        decision: "RateLimitDecision",
    ) -> bool:
        """Returns True when a record was emitted."""
        if not self.enabled:
            return False

        if ctx.principal is not None:
            identity = f"user:{ctx.principal.id}"
        else:
            identity = f"ip:{anonymize_ip(ctx.client_ip)}"

        try:
            self._logger.warning(
                self.EVENT,
                identity=identity,
                tier=str(classification.tier),
                category=classification.category,
                role=str(classification.role),
                method=str(classification.method),
                path=ctx.path,
                count=decision.count,
                limit=decision.limit,
                key=decision.violated_key,
                occurred_at=datetime.now(timezone.utc).isoformat(),
            )
        except Exception:
            return False
        return True
