"""Entitlement checks and usage reporting against the billing collaborator.

Billing is metered per installation: a GitHub App installation id is the
external customer id in Polar, and every generated image consumes one unit
from the customer's meter. The gate runs before anything that costs money;
the usage report runs after the comment is live.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from prvisual_core.errors import BillingError, EntitlementDenied, ReportingFailure

if TYPE_CHECKING:
    from prvisual_core.events import InboundEvent

logger = logging.getLogger(__name__)

POLAR_API_URL = "https://api.polar.sh"
USAGE_EVENT_NAME = "pr_visual_generation"
# Measured cost of one brief + one 2K image, in cents.
DEFAULT_COST_CENTS = 13.9


@dataclass(frozen=True)
class EntitlementState:
    account_id: str
    customer_id: str
    has_balance: bool
    balance: float


class BaseBilling(ABC):
    @abstractmethod
    def get_state(self, account_id: str) -> EntitlementState | None:
        """Return the account's meter state, or None if the account is unknown.

        Raise BillingError for anything else (network, 5xx) so the caller can
        retry; only a definite "not found" may map to None.
        """

    @abstractmethod
    def ingest_usage(self, customer_id: str, name: str, metadata: dict) -> None:
        """Record one usage event against ``customer_id``."""

    @abstractmethod
    def create_checkout(self, account_id: str, success_url: str) -> str:
        """Create a checkout session linked to ``account_id`` and return its url."""

    def close(self) -> None:
        pass


class PolarBilling(BaseBilling):
    """Polar REST API over httpx. One instance per workflow run."""

    def __init__(
        self,
        api_key: str,
        product_ids: list[str] | None = None,
        base_url: str = POLAR_API_URL,
        timeout: float = 90.0,
        client: httpx.Client | None = None,
    ):
        self._product_ids = list(product_ids or [])
        self._client = client or httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    def get_state(self, account_id: str) -> EntitlementState | None:
        try:
            response = self._client.get(f"/v1/customers/external/{account_id}/state")
        except httpx.HTTPError as e:
            raise BillingError(f"Polar customer lookup failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise BillingError(f"Polar customer lookup failed with HTTP {response.status_code}")

        data = response.json()
        meters = data.get("active_meters") or []
        balance = max((m.get("balance") or 0 for m in meters), default=0)
        return EntitlementState(
            account_id=str(account_id),
            customer_id=str(data.get("id", "")),
            has_balance=balance > 0,
            balance=balance,
        )

    def ingest_usage(self, customer_id: str, name: str, metadata: dict) -> None:
        try:
            response = self._client.post(
                "/v1/events/ingest",
                json={"events": [{"name": name, "customer_id": customer_id, "metadata": metadata}]},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BillingError(f"Polar usage ingest failed: {e}") from e

    def create_checkout(self, account_id: str, success_url: str) -> str:
        try:
            response = self._client.post(
                "/v1/checkouts/",
                json={
                    "products": self._product_ids,
                    "external_customer_id": str(account_id),
                    "success_url": success_url,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise BillingError(f"Polar checkout creation failed: {e}") from e
        return response.json()["url"]

    def close(self) -> None:
        self._client.close()


class StaticBilling(BaseBilling):
    """Fixed balance for local runs: every account is known and funded.

    Usage events are kept in memory so a dry run can show what would have
    been billed.
    """

    def __init__(self, balance: float = 1.0, checkout_url: str = "https://polar.sh"):
        self.balance = balance
        self.checkout_url = checkout_url
        self.events: list[dict] = []

    def get_state(self, account_id: str) -> EntitlementState | None:
        return EntitlementState(
            account_id=str(account_id),
            customer_id=f"local-{account_id}",
            has_balance=self.balance > 0,
            balance=self.balance,
        )

    def ingest_usage(self, customer_id: str, name: str, metadata: dict) -> None:
        self.events.append({"name": name, "customer_id": customer_id, "metadata": metadata})

    def create_checkout(self, account_id: str, success_url: str) -> str:
        return self.checkout_url


class EntitlementGate:
    def __init__(self, billing: BaseBilling):
        self._billing = billing

    def check(self, account_id: int | str) -> EntitlementState:
        """Return the account's state or raise EntitlementDenied.

        Unknown accounts are ``no_billing``; a non-positive balance is
        ``no_credits``. Both are final for this workflow.
        """
        state = self._billing.get_state(str(account_id))
        if state is None:
            logger.info("Skipping - no billing for installation %s", account_id)
            raise EntitlementDenied(EntitlementDenied.NO_BILLING, account_id)
        if not state.has_balance:
            logger.info("Skipping - no credits for installation %s (balance: %s)", account_id, state.balance)
            raise EntitlementDenied(EntitlementDenied.NO_CREDITS, account_id)
        return state


class UsageReporter:
    def __init__(self, billing: BaseBilling, cost_cents: float = DEFAULT_COST_CENTS):
        self._billing = billing
        self._cost_cents = cost_cents

    def report(self, customer_id: str, event: InboundEvent, artifact_url: str) -> None:
        metadata = {
            "_cost": {"amount": self._cost_cents, "currency": "usd"},
            "repo": event.repository,
            "pr_number": event.number,
            "head_sha": event.head_sha,
            "image_url": artifact_url,
        }
        try:
            self._billing.ingest_usage(customer_id, USAGE_EVENT_NAME, metadata)
        except BillingError as e:
            raise ReportingFailure(str(e)) from e
