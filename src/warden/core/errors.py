"""
Error taxonomy for the rate limiting core.

Only ConfigurationError is meant to abort the process. Everything else is
handled by the enforcer and surfaced as an ordinary HTTP response.
"""


class WardenError(Exception):
    """Base class for all rate limiting errors."""


class ConfigurationError(WardenError):
    """
    The policy table or a route declaration is invalid.

    Raised at startup: a route that references a (tier, category) pair
    without a policy entry must prevent the application from starting.
    """


class PolicyLookupError(ConfigurationError):
    """No limit is configured for a (tier, category, role, method) key."""


class CounterStoreUnavailable(WardenError):
    """The backing counter store could not be reached."""


class UnsupportedMethod(WardenError):
    """The request verb has no quota in any policy table."""

    def __init__(self, method: str):
        super().__init__(f"HTTP method {method!r} is not rate limited")
        self.method = method
