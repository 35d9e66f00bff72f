"""Entitlement resolution: account state in, capabilities out.

Pure functions only. Callers load the account and catalog and pass plain
values in, so the same rules run inside the issue transaction and behind the
read-only entitlements endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol

TRIAL = "trial"
PAID = "paid"


class AccountState(Protocol):
    plan: str
    subscription_status: str | None
    trial_credits_remaining: int
    tokens_remaining: int
    trial_purchase_count: int


class CatalogItem(Protocol):
    id: str
    tier_required: str


@dataclass(frozen=True)
class PlanLimits:
    trial_max_session_seconds: int = 90
    paid_max_session_seconds: int = 300
    max_trial_purchases: int = 2


@dataclass(frozen=True)
class Entitlement:
    plan: str
    can_call: bool
    is_overage: bool
    max_session_seconds: int
    can_purchase_another_trial_package: bool
    unlocked_content_ids: tuple[str, ...] = field(default_factory=tuple)
    locked_content_ids: tuple[str, ...] = field(default_factory=tuple)
    reason: str | None = None

    def allows_content(self, content_id: str) -> bool:
        return content_id in self.unlocked_content_ids


def content_unlocked(plan: str, tier_required: str) -> bool:
    """Paid unlocks everything; trial only unlocks items tagged trial."""
    if plan == PAID:
        return True
    return tier_required == TRIAL


def resolve_entitlement(
    account: AccountState,
    catalog: Iterable[CatalogItem] = (),
    limits: PlanLimits = PlanLimits(),
) -> Entitlement:
    """Compute what `account` may do right now."""
    items = list(catalog)
    unlocked = tuple(i.id for i in items if content_unlocked(account.plan, i.tier_required))
    locked = tuple(i.id for i in items if not content_unlocked(account.plan, i.tier_required))

    if account.plan == PAID:
        if account.tokens_remaining > 0:
            can_call, is_overage, reason = True, False, None
        else:
            is_overage = True
            can_call = account.subscription_status == "active"
            reason = None if can_call else "Subscription is not active and no tokens remain"
        return Entitlement(
            plan=PAID,
            can_call=can_call,
            is_overage=is_overage,
            max_session_seconds=limits.paid_max_session_seconds,
            can_purchase_another_trial_package=False,
            unlocked_content_ids=unlocked,
            locked_content_ids=locked,
            reason=reason,
        )

    can_call = account.trial_credits_remaining > 0
    return Entitlement(
        plan=TRIAL,
        can_call=can_call,
        is_overage=False,
        max_session_seconds=limits.trial_max_session_seconds,
        can_purchase_another_trial_package=account.trial_purchase_count < limits.max_trial_purchases,
        unlocked_content_ids=unlocked,
        locked_content_ids=locked,
        reason=None if can_call else "No trial credits remaining",
    )
