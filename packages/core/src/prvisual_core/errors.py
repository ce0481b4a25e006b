"""Exception taxonomy for the PR visual pipeline."""

from __future__ import annotations


class PRVisualError(Exception):
    """Base class for every error raised by prvisual_core."""


class AuthError(PRVisualError):
    """Missing or invalid webhook signature. Rejected before any processing."""


class FilterSkip(PRVisualError):
    """The event is well-formed but not one we act on. Terminal, not a failure."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class EntitlementDenied(PRVisualError):
    """The account may not consume the service. Never retried, no cost incurred."""

    NO_BILLING = "no_billing"
    NO_CREDITS = "no_credits"

    def __init__(self, reason: str, account_id: int | str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.account_id = account_id


class GenerationError(PRVisualError):
    """The content generation service failed or returned nothing usable."""


class BillingError(PRVisualError):
    """The billing collaborator failed for a reason other than an unknown account."""


class UpstreamFailure(PRVisualError):
    """A pipeline step failed after exhausting its retries."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


class ReportingFailure(PRVisualError):
    """Usage reporting failed. Logged only; the workflow outcome stands."""
