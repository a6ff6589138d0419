"""Publishing eligibility rules for subscriptions and credit packages.

The functions in this module are pure: they read grant snapshots and never
mutate them. :class:`EntitlementPolicy` wires them to a grant store.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Union

from ..grants.models import PackageGrant, SubscriptionGrant
from ..grants.store import GrantStore
from .exceptions import CreditsExhausted, EntitlementError, LimitReached, NoActiveGrant
from .models import PublishingRights, RestrictionReason

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def subscription_eligible(subscription: Optional[SubscriptionGrant], *, now: Optional[datetime] = None) -> bool:
    if subscription is None:
        return False
    if now is not None and not subscription.is_active_at(now):
        return False
    return (
        subscription.weekly_used < subscription.weekly_limit
        and subscription.monthly_used < subscription.monthly_limit
    )


def package_eligible(package: PackageGrant, *, now: Optional[datetime] = None) -> bool:
    if now is not None and not package.is_active_at(now):
        return False
    return package.used_credits < package.total_credits


def candidate_order(
    subscription: Optional[SubscriptionGrant],
    packages: Sequence[PackageGrant],
    *,
    now: Optional[datetime] = None,
) -> List[Union[SubscriptionGrant, PackageGrant]]:
    """Eligible grants in debit order: the subscription, then packages oldest first."""

    candidates: List[Union[SubscriptionGrant, PackageGrant]] = []
    if subscription_eligible(subscription, now=now):
        candidates.append(subscription)
    ordered = sorted(packages, key=lambda package: (package.created_at, package.id))
    candidates.extend(package for package in ordered if package_eligible(package, now=now))
    return candidates


def select_grant(
    subscription: Optional[SubscriptionGrant],
    packages: Sequence[PackageGrant],
    *,
    now: Optional[datetime] = None,
) -> Optional[Union[SubscriptionGrant, PackageGrant]]:
    candidates = candidate_order(subscription, packages, now=now)
    return candidates[0] if candidates else None


def restriction_reason(
    subscription: Optional[SubscriptionGrant],
    packages: Sequence[PackageGrant],
    *,
    now: Optional[datetime] = None,
) -> Optional[RestrictionReason]:
    """Return the single highest-priority reason publishing is blocked, if any.

    When ``now`` is given, grants past their expiry count as absent for the
    limit and credit checks; if only such grants were supplied the reason is
    ``expired``.
    """

    if select_grant(subscription, packages, now=now) is not None:
        return None
    if subscription is None and not packages:
        return RestrictionReason.NO_ACTIVE_GRANT
    if subscription is not None and (now is None or subscription.is_active_at(now)):
        return RestrictionReason.LIMIT_REACHED
    if any(now is None or package.is_active_at(now) for package in packages):
        return RestrictionReason.CREDITS_EXHAUSTED
    return RestrictionReason.EXPIRED


def evaluate_rights(
    user_id: str,
    subscription: Optional[SubscriptionGrant],
    packages: Sequence[PackageGrant],
    *,
    now: datetime,
) -> PublishingRights:
    """Build :class:`PublishingRights` for a user's active grants.

    Grants whose expiry has passed are ignored even while their stored status
    is still ``active``.
    """

    live_subscription = subscription if subscription is not None and subscription.is_active_at(now) else None
    live_packages = [package for package in packages if package.is_active_at(now)]
    selected = select_grant(live_subscription, live_packages)
    total_credits = sum(package.total_credits for package in live_packages)
    used_credits = sum(package.used_credits for package in live_packages)

    weekly_limit = weekly_used = monthly_limit = monthly_used = 0
    if live_subscription is not None:
        weekly_limit = live_subscription.weekly_limit
        weekly_used = live_subscription.weekly_used
        monthly_limit = live_subscription.monthly_limit
        monthly_used = live_subscription.monthly_used

    return PublishingRights(
        user_id=user_id,
        can_publish=selected is not None,
        restriction_reason=restriction_reason(subscription, packages, now=now),
        weekly_limit=weekly_limit,
        weekly_used=weekly_used,
        weekly_remaining=max(weekly_limit - weekly_used, 0),
        monthly_limit=monthly_limit,
        monthly_used=monthly_used,
        monthly_remaining=max(monthly_limit - monthly_used, 0),
        total_credits=total_credits,
        used_credits=used_credits,
        credits_remaining=max(total_credits - used_credits, 0),
        selected_grant_id=selected.id if selected is not None else None,
        active_subscription=live_subscription,
        active_packages=live_packages,
        evaluated_at=now,
    )


_REASON_ERRORS = {
    RestrictionReason.NO_ACTIVE_GRANT: NoActiveGrant,
    RestrictionReason.LIMIT_REACHED: LimitReached,
    RestrictionReason.CREDITS_EXHAUSTED: CreditsExhausted,
    RestrictionReason.EXPIRED: NoActiveGrant,
}


def error_for_reason(reason: RestrictionReason, rights: Optional[PublishingRights] = None) -> EntitlementError:
    detail = {"restriction_reason": reason.value}
    if rights is not None:
        detail.update(
            weekly_remaining=rights.weekly_remaining,
            monthly_remaining=rights.monthly_remaining,
            credits_remaining=rights.credits_remaining,
        )
    return _REASON_ERRORS[reason](detail=detail)


@dataclass
class EntitlementPolicy:
    """Read-only publishing decisions for a user."""

    store: GrantStore
    clock: Clock = field(default=utc_now)

    def evaluate(self, user_id: str) -> PublishingRights:
        now = self.clock()
        subscription = self.store.active_subscription_for(user_id, now=now)
        packages = self.store.active_packages_for(user_id, now=now)
        return evaluate_rights(user_id, subscription, packages, now=now)

    def require_publishing_rights(self, user_id: str) -> PublishingRights:
        """Return the user's rights or raise the error matching the restriction reason."""

        rights = self.evaluate(user_id)
        if not rights.can_publish:
            raise error_for_reason(rights.restriction_reason or RestrictionReason.EXPIRED, rights)
        return rights


__all__ = [
    "Clock",
    "EntitlementPolicy",
    "candidate_order",
    "error_for_reason",
    "evaluate_rights",
    "package_eligible",
    "restriction_reason",
    "select_grant",
    "subscription_eligible",
    "utc_now",
]
