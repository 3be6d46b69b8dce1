"""
Referral Ledger & Approval Workflow Engine

This package provides:
- Accounts with balance, earnings and referral counters kept consistent
- Referral attribution and commission payout
- Payment and withdrawal workflows: pending -> approved / rejected
- An approval gate restricting resolutions to configured admins
- Atomic, per-account ledger updates safe under concurrent handlers
"""

from .config import Settings, get_settings
from .errors import (
    LedgerServiceError,
    NotFoundError,
    AlreadyExistsError,
    InvalidTransitionError,
    InvariantViolationError,
    InsufficientBalanceError,
    BelowMinimumError,
    NotEligibleError,
    AccessDeniedError,
    InvalidReferralError,
    InvalidRequestError,
    RecordInvalidError,
    StoreUnavailableError,
)
from .models import (
    Account,
    AccountStatus,
    AdminAction,
    AdminCommand,
    LedgerDelta,
    Payment,
    Referral,
    ReferralStatus,
    ResolutionStatus,
    Withdrawal,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "Settings",
    "get_settings",
    "LedgerServiceError",
    "NotFoundError",
    "AlreadyExistsError",
    "InvalidTransitionError",
    "InvariantViolationError",
    "InsufficientBalanceError",
    "BelowMinimumError",
    "NotEligibleError",
    "AccessDeniedError",
    "InvalidReferralError",
    "InvalidRequestError",
    "RecordInvalidError",
    "StoreUnavailableError",
    "Account",
    "AccountStatus",
    "AdminAction",
    "AdminCommand",
    "LedgerDelta",
    "Payment",
    "Referral",
    "ReferralStatus",
    "ResolutionStatus",
    "Withdrawal",
    "LedgerService",
    "InMemoryStorage",
]
