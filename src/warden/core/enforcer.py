"""
Rate limit enforcement.

The enforcer ties classification, policy lookup and the counter store
together and returns a RateLimitDecision. It knows nothing about HTTP
frameworks: the calling layer turns decisions into responses and headers.
"""

import math
import time
from dataclasses import dataclass
from enum import StrEnum

import structlog

from warden.core.classifier import Classification, RequestClassifier, RequestContext
from warden.core.errors import CounterStoreUnavailable, PolicyLookupError, UnsupportedMethod
from warden.core.policy import RateLimitPolicy, Tier
from warden.core.reporter import ViolationReporter
from warden.core.strategies.fixed_window import FixedWindowStrategy


class Outcome(StrEnum):
    ALLOWED = "allowed"
    RATE_LIMITED = "rate_limited"
    MISCONFIGURED = "misconfigured"
    STORE_UNAVAILABLE = "store_unavailable"


class FailureMode(StrEnum):
    """What to do with a request when the counter store is unreachable."""

    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Result of enforcing a quota on one request.

    `violated_key` is only set for RATE_LIMITED denials. A request admitted
    while the store was down has outcome STORE_UNAVAILABLE and carries no
    meaningful counter data.
    """

    allowed: bool
    outcome: Outcome
    limit: int
    remaining: int
    reset_at: int
    count: int = 0
    retry_after: int | None = None
    violated_key: str | None = None

    @property
    def has_counter(self) -> bool:
        return self.outcome in (Outcome.ALLOWED, Outcome.RATE_LIMITED)

    def headers(self) -> dict[str, str]:
        if not self.has_counter:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitEnforcer:
    """
    Admission control for a single request.

    Args:
        policy: Validated limit table.
        strategy: Counter strategy wrapping the shared store.
        reporter: Sink for violation records.
        decay_seconds: Window length shared by every policy entry.
        failure_mode: Fail open (admit, warn) or closed (deny) when the
            counter store is unreachable.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        strategy: FixedWindowStrategy,
        reporter: ViolationReporter,
        decay_seconds: int = 60,
        failure_mode: FailureMode = FailureMode.OPEN,
        classifier: RequestClassifier | None = None,
    ):
        self.policy = policy
        self.strategy = strategy
        self.reporter = reporter
        self.decay_seconds = decay_seconds
        self.failure_mode = failure_mode
        self.classifier = classifier or RequestClassifier()
        self._logger = structlog.get_logger("warden.enforcer")

    async def enforce(self, ctx: RequestContext, tier: Tier, category: str) -> RateLimitDecision:
        try:
            classification = self.classifier.classify(ctx, tier, category)
            limit = self.policy.limit_for(
                classification.tier,
                classification.category,
                classification.role,
                classification.method,
            )
        except (PolicyLookupError, UnsupportedMethod) as exc:
            self._logger.error(
                "rate_limit_policy_missing",
                tier=str(tier),
                category=category,
                method=ctx.method,
                path=ctx.path,
                error=str(exc),
            )
            return self._misconfigured()

        key = classification.counter_key
        try:
            response = await self.strategy.check(key, limit, self.decay_seconds)
        except CounterStoreUnavailable as exc:
            return self._store_unavailable(classification, limit, exc)

        self._logger.debug(
            "rate_limit_check",
            key=key,
            allowed=response.allowed,
            count=response.count,
            limit=limit,
        )

        if response.allowed:
            return RateLimitDecision(
                allowed=True,
                outcome=Outcome.ALLOWED,
                limit=limit,
                remaining=response.remaining,
                reset_at=math.ceil(response.reset_at),
                count=response.count,
            )

        decision = RateLimitDecision(
            allowed=False,
            outcome=Outcome.RATE_LIMITED,
            limit=limit,
            remaining=0,
            reset_at=math.ceil(response.reset_at),
            count=response.count,
            retry_after=max(1, math.ceil(response.retry_after or 0)),
            violated_key=key,
        )
        self.reporter.report(ctx, classification, decision)
        return decision

    def _misconfigured(self) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=False,
            outcome=Outcome.MISCONFIGURED,
            limit=0,
            remaining=0,
            reset_at=math.ceil(time.time()) + self.decay_seconds,
        )

    def _store_unavailable(
        self,
        classification: Classification,
        limit: int,
        exc: CounterStoreUnavailable,
    ) -> RateLimitDecision:
        allowed = self.failure_mode == FailureMode.OPEN
        self._logger.warning(
            "counter_store_unavailable",
            failure_mode=str(self.failure_mode),
            allowed=allowed,
            tier=str(classification.tier),
            category=classification.category,
            error=str(exc),
        )
        return RateLimitDecision(
            allowed=allowed,
            outcome=Outcome.STORE_UNAVAILABLE,
            limit=limit,
            remaining=limit if allowed else 0,
            reset_at=math.ceil(time.time()) + self.decay_seconds,
        )
