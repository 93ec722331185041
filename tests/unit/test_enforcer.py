"""
Unit tests for RateLimitEnforcer.

Uses the default policy, an InMemoryBackend driven by a fake clock and
structlog's capture_logs to observe violation and failure records.
"""

import math
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from warden.core.backends.memory import InMemoryBackend
from warden.core.classifier import Principal, RequestContext
from warden.core.enforcer import FailureMode, Outcome, RateLimitEnforcer
from warden.core.errors import CounterStoreUnavailable
from warden.core.policy import RateLimitPolicy, Tier
from warden.core.reporter import ViolationReporter
from warden.core.strategies.fixed_window import FixedWindowStrategy


def make_ctx(method: str = "GET", principal: Principal | None = None, ip: str = "198.51.100.20") -> RequestContext:
    return RequestContext(method=method, path="/v1/auth/login", client_ip=ip, principal=principal)


@pytest.fixture
def make_enforcer(policy: RateLimitPolicy, backend: InMemoryBackend):
    def factory(
        log_violations: bool = True,
        failure_mode: FailureMode = FailureMode.OPEN,
        strategy=None,
    ) -> RateLimitEnforcer:
        return RateLimitEnforcer(
            policy=policy,
            strategy=strategy or FixedWindowStrategy(backend),
            reporter=ViolationReporter(enabled=log_violations),
            decay_seconds=60,
            failure_mode=failure_mode,
        )

    return factory


class TestQuotaEnforcement:
    @pytest.mark.asyncio
    async def test_sixth_login_is_rejected(self, make_enforcer) -> None:
        """Public auth POST allows 5 per minute."""
        with capture_logs() as logs:
            enforcer = make_enforcer()
            decisions = [
                await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")
                for _ in range(6)
            ]

        assert [d.allowed for d in decisions] == [True] * 5 + [False]
        assert [d.remaining for d in decisions] == [4, 3, 2, 1, 0, 0]

        denied = decisions[-1]
        assert denied.outcome == Outcome.RATE_LIMITED
        assert denied.limit == 5
        assert denied.violated_key == "ip:198.51.100.20:public:auth:POST"
        assert denied.retry_after >= 1
        assert denied.headers()["X-RateLimit-Remaining"] == "0"

        violations = [log for log in logs if log["event"] == "rate_limit_exceeded"]
        assert len(violations) == 1

    @pytest.mark.asyncio
    async def test_allowed_decision_has_no_violation_key(self, make_enforcer) -> None:
        decision = await make_enforcer().enforce(make_ctx(), Tier.PUBLIC, "general")

        assert decision.allowed
        assert decision.outcome == Outcome.ALLOWED
        assert decision.violated_key is None
        assert decision.retry_after is None
        assert decision.limit == 60
        assert decision.remaining == 59

    @pytest.mark.asyncio
    async def test_headers(self, make_enforcer, clock) -> None:
        decision = await make_enforcer().enforce(make_ctx(), Tier.PUBLIC, "search")

        assert decision.headers() == {
            "X-RateLimit-Limit": "30",
            "X-RateLimit-Remaining": "29",
            "X-RateLimit-Reset": str(math.ceil(clock.now + 60)),
        }

    @pytest.mark.asyncio
    async def test_reset_is_never_before_the_window_ends(self, make_enforcer, clock) -> None:
        clock.now = 1_700_000_000.5
        enforcer = make_enforcer(log_violations=False)

        allowed = await enforcer.enforce(make_ctx(), Tier.PUBLIC, "search")
        for _ in range(30):
            denied = await enforcer.enforce(make_ctx(), Tier.PUBLIC, "search")

        assert allowed.reset_at == 1_700_000_061
        assert denied.reset_at == 1_700_000_061
        assert denied.retry_after == 60

    @pytest.mark.asyncio
    async def test_new_window_after_decay(self, make_enforcer, clock) -> None:
        enforcer = make_enforcer(log_violations=False)
        for _ in range(6):
            last = await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")
        assert not last.allowed

        clock.advance(61)
        decision = await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")

        assert decision.allowed
        assert decision.count == 1


class TestIsolation:
    @pytest.mark.asyncio
    async def test_identities_do_not_share_counters(self, make_enforcer) -> None:
        enforcer = make_enforcer(log_violations=False)
        for _ in range(6):
            await enforcer.enforce(make_ctx("POST", ip="203.0.113.1"), Tier.PUBLIC, "auth")

        other = await enforcer.enforce(make_ctx("POST", ip="203.0.113.2"), Tier.PUBLIC, "auth")

        assert other.allowed
        assert other.remaining == 4

    @pytest.mark.asyncio
    async def test_categories_do_not_share_counters(self, make_enforcer) -> None:
        enforcer = make_enforcer(log_violations=False)
        user = Principal(id="42")

        for _ in range(21):
            heavy = await enforcer.enforce(make_ctx(principal=user), Tier.AUTHENTICATED, "heavy")
        upload = await enforcer.enforce(make_ctx(principal=user), Tier.AUTHENTICATED, "upload")

        assert not heavy.allowed
        assert upload.allowed
        assert upload.remaining == 49

    @pytest.mark.asyncio
    async def test_methods_do_not_share_counters(self, make_enforcer) -> None:
        enforcer = make_enforcer(log_violations=False)
        for _ in range(5):
            await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")

        decision = await enforcer.enforce(make_ctx("GET"), Tier.PUBLIC, "auth")

        assert decision.allowed
        assert decision.remaining == 9


class TestRoles:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "principal, expected_limit",
        [
            (Principal(id="1"), 200),
            (Principal(id="1", role="unknown"), 200),
            (Principal(id="1", role="premium"), 500),
            (Principal(id="1", is_admin=True), 1000),
        ],
    )
    async def test_authenticated_limit_follows_role(
        self,
        make_enforcer,
        principal: Principal,
        expected_limit: int,
    ) -> None:
        decision = await make_enforcer().enforce(
            make_ctx(principal=principal), Tier.AUTHENTICATED, "general"
        )

        assert decision.limit == expected_limit


class TestMisconfiguration:
    @pytest.mark.asyncio
    async def test_unknown_category_is_denied_and_logged(self, make_enforcer) -> None:
        with capture_logs() as logs:
            decision = await make_enforcer().enforce(make_ctx(), Tier.PUBLIC, "heavy")

        assert not decision.allowed
        assert decision.outcome == Outcome.MISCONFIGURED
        assert decision.headers() == {}
        assert [log["log_level"] for log in logs if log["event"] == "rate_limit_policy_missing"] == ["error"]

    @pytest.mark.asyncio
    async def test_unsupported_method_is_denied(self, make_enforcer) -> None:
        decision = await make_enforcer().enforce(make_ctx("OPTIONS"), Tier.PUBLIC, "general")

        assert not decision.allowed
        assert decision.outcome == Outcome.MISCONFIGURED


class TestStoreFailure:
    @pytest.fixture
    def broken_strategy(self):
        strategy = AsyncMock()
        strategy.check.side_effect = CounterStoreUnavailable("connection refused")
        return strategy

    @pytest.mark.asyncio
    async def test_fail_open_admits_with_warning(self, make_enforcer, broken_strategy) -> None:
        with capture_logs() as logs:
            enforcer = make_enforcer(strategy=broken_strategy)
            decision = await enforcer.enforce(make_ctx(), Tier.PUBLIC, "general")

        assert decision.allowed
        assert decision.outcome == Outcome.STORE_UNAVAILABLE
        assert decision.headers() == {}
        warnings = [log for log in logs if log["event"] == "counter_store_unavailable"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"

    @pytest.mark.asyncio
    async def test_fail_closed_denies(self, make_enforcer, broken_strategy) -> None:
        with capture_logs() as logs:
            enforcer = make_enforcer(strategy=broken_strategy, failure_mode=FailureMode.CLOSED)
            decision = await enforcer.enforce(make_ctx(), Tier.PUBLIC, "general")

        assert not decision.allowed
        assert decision.outcome == Outcome.STORE_UNAVAILABLE
        assert not [log for log in logs if log["event"] == "rate_limit_exceeded"]


class TestViolationLogging:
    @pytest.mark.asyncio
    async def test_disabled_logging_emits_nothing(self, make_enforcer) -> None:
        with capture_logs() as logs:
            enforcer = make_enforcer(log_violations=False)
            for _ in range(8):
                await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")

        assert not [log for log in logs if log["event"] == "rate_limit_exceeded"]

    @pytest.mark.asyncio
    async def test_one_record_per_denial(self, make_enforcer) -> None:
        with capture_logs() as logs:
            enforcer = make_enforcer()
            for _ in range(8):
                await enforcer.enforce(make_ctx("POST"), Tier.PUBLIC, "auth")

        assert len([log for log in logs if log["event"] == "rate_limit_exceeded"]) == 3
