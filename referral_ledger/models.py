from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, ValidationError

from .errors import RecordInvalidError


class AccountStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"
    PENDING = "pending"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AdminAction(str, Enum):
    APPROVE_PAYMENT = "approve_payment"
    REJECT_PAYMENT = "reject_payment"
    APPROVE_WITHDRAWAL = "approve_withdrawal"
    REJECT_WITHDRAWAL = "reject_withdrawal"


class Record(BaseModel):
    """A fixed-shape entity stored as a plain document."""

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_document(cls, data: dict, record_id: Optional[str] = None):
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise RecordInvalidError(cls.__name__, str(e), record_id)

    def to_document(self) -> dict:
        return self.model_dump()


class Account(Record):
    id: str
    display_name: str
    referral_code: str
    status: AccountStatus = AccountStatus.ACTIVE
    balance: int = Field(default=0, ge=0)
    total_earned: int = Field(default=0, ge=0)
    total_withdrawn: int = Field(default=0, ge=0)
    paid_referrals: int = Field(default=0, ge=0)
    unpaid_referrals: int = Field(default=0, ge=0)
    total_referrals: int = Field(default=0, ge=0)
    block_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    sequence: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_blocked(self) -> bool:
        return self.status == AccountStatus.BLOCKED


class LedgerDelta(BaseModel):
    """Signed adjustment applied atomically to an account."""

    balance: int = 0
    total_earned: int = 0
    total_withdrawn: int = 0
    paid_referrals: int = 0
    unpaid_referrals: int = 0
    total_referrals: int = 0


class Referral(Record):
    referrer_id: str
    referred_id: str
    status: ReferralStatus = ReferralStatus.PENDING
    commission: int = Field(default=0, ge=0)
    created_at: datetime
    paid_at: Optional[datetime] = None


class Payment(Record):
    id: str
    user_id: str
    amount: int = Field(gt=0)
    proof_reference: str
    method: str = "telebirr"
    status: ResolutionStatus = ResolutionStatus.PENDING
    submitted_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    credited_referrer_id: Optional[str] = None

    def can_resolve(self) -> bool:
        return self.status == ResolutionStatus.PENDING


class Withdrawal(Record):
    id: str
    user_id: str
    amount: int = Field(gt=0)
    payment_method: str
    account_number: str
    status: ResolutionStatus = ResolutionStatus.PENDING
    requested_at: datetime
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    def can_resolve(self) -> bool:
        return self.status == ResolutionStatus.PENDING


class AdminCommand(BaseModel):
    action: AdminAction
    entity_id: str = Field(..., min_length=1)
    reason: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "action": "reject_payment",
            "entity_id": "PAY_123456789_1700000000000",
            "reason": "Screenshot is unreadable"
        }
    })


class Registration(BaseModel):
    account: Account
    referral: Optional[Referral] = None


class BalanceSummary(BaseModel):
    user_id: str
    balance: int
    total_earned: int
    total_withdrawn: int
    paid_referrals: int
    unpaid_referrals: int
    total_referrals: int
    eligible: bool
    referrals_needed: int
    min_paid_referrals: int
    min_withdrawal_amount: int
    commission_per_referral: int


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: str
    paid_referrals: int


class AdminStats(BaseModel):
    total_users: int
    total_payments: int
    pending_payments: int
    pending_withdrawals: int


# HTTP request bodies

class CreateAccountRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    referral_code: Optional[str] = Field(default=None, description="Code from the invite link, if any")


class SubmitPaymentRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    proof_reference: str = Field(..., min_length=1, description="Opaque handle to the uploaded receipt")
    amount: Optional[int] = None


class WithdrawalRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    amount: int
    payment_method: str
    account_number: str

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "user_id": "123456789",
            "amount": 1000,
            "payment_method": "telebirr",
            "account_number": "251912345678"
        }
    })


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class BlockRequest(BaseModel):
    reason: str = ""
