"""Entitlement engine: publishing policy, usage consumption and domain errors.

Only the exception types are re-exported here; import ``policy``,
``consumer`` and ``models`` from their submodules.
"""

from .exceptions import (
    ConcurrencyConflict,
    CreditsExhausted,
    EntitlementError,
    GrantNotFound,
    InsufficientEntitlement,
    InvalidPlanConfiguration,
    LimitReached,
    NoActiveGrant,
    PlanNotFound,
    UnknownPaymentReference,
)

__all__ = [
    "ConcurrencyConflict",
    "CreditsExhausted",
    "EntitlementError",
    "GrantNotFound",
    "InsufficientEntitlement",
    "InvalidPlanConfiguration",
    "LimitReached",
    "NoActiveGrant",
    "PlanNotFound",
    "UnknownPaymentReference",
]
