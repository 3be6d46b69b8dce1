from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from .accounts import AccountStore
from .errors import AccessDeniedError, BelowMinimumError, InvalidTransitionError, NotFoundError
from .gate import ApprovalGate
from .models import Payment, ResolutionStatus
from .referrals import ReferralTracker
from .storage import PAYMENTS, InMemoryStorage


class PaymentWorkflow:
    """pending -> approved | rejected for submitted payment proofs."""

    def __init__(
        self,
        storage: InMemoryStorage,
        accounts: AccountStore,
        referrals: ReferralTracker,
        gate: ApprovalGate,
        default_amount: int,
    ):
        self.storage = storage
        self.accounts = accounts
        self.referrals = referrals
        self.gate = gate
        self.default_amount = default_amount

    def get_payment(self, payment_id: str) -> Payment:
        data = self.storage.get(PAYMENTS, payment_id)
        if not data:
            raise NotFoundError("Payment", payment_id)
        return Payment.from_document(data, payment_id)

    def submit(self, user_id: str, proof_reference: str, amount: Optional[int] = None) -> Payment:
        account = self.accounts.get_account(user_id)
        if account.is_blocked:
            raise AccessDeniedError("Blocked accounts cannot submit payments", user_id=user_id)

        amount = self.default_amount if amount is None else amount
        if amount <= 0:
            raise BelowMinimumError(amount, minimum=1)

        payment = Payment(
            id=self.storage.allocate_id(PAYMENTS, "PAY", user_id),
            user_id=user_id,
            amount=amount,
            proof_reference=proof_reference,
            status=ResolutionStatus.PENDING,
            submitted_at=datetime.now(timezone.utc),
        )
        self.storage.put(PAYMENTS, payment.id, payment.to_document())

        logger.bind(payment_id=payment.id, user_id=user_id, amount=amount).info("Payment submitted")
        return payment

    def approve(self, payment_id: str, approver_id: str) -> Payment:
        self.gate.require(approver_id, "approve_payment")
        if not self.storage.contains(PAYMENTS, payment_id):
            raise NotFoundError("Payment", payment_id)

        with self.storage.locked((PAYMENTS, payment_id)):
            payment = self.get_payment(payment_id)
            if not payment.can_resolve():
                raise InvalidTransitionError("Payment", payment_id, payment.status.value, "approve")

            # The payer is the referred user; their referral names the referrer to credit.
            referral = self.referrals.mark_paid(payment.user_id)

            approved = payment.model_copy(update={
                "status": ResolutionStatus.APPROVED,
                "resolved_at": datetime.now(timezone.utc),
                "resolved_by": approver_id,
                "credited_referrer_id": referral.referrer_id if referral else None,
            })
            self.storage.put(PAYMENTS, payment_id, approved.to_document())

        logger.bind(
            payment_id=payment_id,
            approved_by=approver_id,
            credited_referrer_id=approved.credited_referrer_id,
        ).info("Payment approved")
        return approved

    def reject(self, payment_id: str, reason: str, approver_id: str) -> Payment:
        self.gate.require(approver_id, "reject_payment")
        if not self.storage.contains(PAYMENTS, payment_id):
            raise NotFoundError("Payment", payment_id)

        with self.storage.locked((PAYMENTS, payment_id)):
            payment = self.get_payment(payment_id)
            if not payment.can_resolve():
                raise InvalidTransitionError("Payment", payment_id, payment.status.value, "reject")

            rejected = payment.model_copy(update={
                "status": ResolutionStatus.REJECTED,
                "resolved_at": datetime.now(timezone.utc),
                "resolved_by": approver_id,
                "rejection_reason": reason,
            })
            self.storage.put(PAYMENTS, payment_id, rejected.to_document())

        logger.bind(payment_id=payment_id, rejected_by=approver_id, reason=reason).info("Payment rejected")
        return rejected

    def list_pending(self) -> list[Payment]:
        pending = [
            Payment.from_document(d) for d in self.storage.values(PAYMENTS)
            if d.get("status") == ResolutionStatus.PENDING
        ]
        pending.sort(key=lambda p: p.submitted_at)
        return pending

    def list_for_user(self, user_id: str) -> list[Payment]:
        payments = [
            Payment.from_document(d) for d in self.storage.values(PAYMENTS)
            if d.get("user_id") == user_id
        ]
        payments.sort(key=lambda p: p.submitted_at)
        return payments

    def count(self, status: Optional[ResolutionStatus] = None) -> int:
        if status is None:
            return self.storage.count(PAYMENTS)
        return sum(1 for d in self.storage.values(PAYMENTS) if d.get("status") == status)
