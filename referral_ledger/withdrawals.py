"""
Withdrawal workflow.

A withdrawal is admitted only when the account is eligible at request
time; the amount is fixed then and re-checked against the balance when an
admin approves it. Funds leave the balance only on approval.
"""

from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from .accounts import AccountStore
from .errors import (
    AccessDeniedError,
    BelowMinimumError,
    InsufficientBalanceError,
    InvalidRequestError,
    InvalidTransitionError,
    NotEligibleError,
    NotFoundError,
)
from .gate import ApprovalGate
from .models import LedgerDelta, ResolutionStatus, Withdrawal
from .storage import ACCOUNTS, WITHDRAWALS, InMemoryStorage


class WithdrawalWorkflow:
    def __init__(
        self,
        storage: InMemoryStorage,
        accounts: AccountStore,
        gate: ApprovalGate,
        min_paid_referrals: int,
        min_amount: int,
    ):
        self.storage = storage
        self.accounts = accounts
        self.gate = gate
        self.min_paid_referrals = min_paid_referrals
        self.min_amount = min_amount

    def get_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        data = self.storage.get(WITHDRAWALS, withdrawal_id)
        if not data:
            raise NotFoundError("Withdrawal", withdrawal_id)
        return Withdrawal.from_document(data, withdrawal_id)

    def request(self, user_id: str, amount: int, method: str, account_number: str) -> Withdrawal:
        """
        Create a pending withdrawal.

        Args:
            user_id: Requesting account
            amount: Amount in minor units, fixed for the life of the request
            method: Payout method, e.g. "telebirr"
            account_number: Destination account for the payout

        Raises:
            NotEligibleError: Too few paid referrals, or a withdrawal is already pending
            BelowMinimumError: Amount under the configured minimum
            InsufficientBalanceError: Amount above the current balance
        """
        method = (method or "").strip()
        account_number = (account_number or "").strip()
        if not method or not account_number:
            raise InvalidRequestError(
                "Payment method and account number are required",
                payment_method=method, account_number=account_number,
            )

        if not self.storage.contains(ACCOUNTS, user_id):
            raise NotFoundError("Account", user_id)

        with self.storage.locked((ACCOUNTS, user_id)):
            account = self.accounts.get_account(user_id)
            if account.is_blocked:
                raise AccessDeniedError("Blocked accounts cannot request withdrawals", user_id=user_id)

            if account.paid_referrals < self.min_paid_referrals:
                needed = self.min_paid_referrals - account.paid_referrals
                raise NotEligibleError(
                    f"Need {needed} more paid referrals to withdraw",
                    reason="paid_referrals",
                    required=self.min_paid_referrals,
                    current=account.paid_referrals,
                    needed=needed,
                )
            if amount < self.min_amount:
                raise BelowMinimumError(amount, self.min_amount)
            if amount > account.balance:
                raise InsufficientBalanceError(amount, account.balance)

            pending = self._pending_for_user(user_id)
            if pending:
                raise NotEligibleError(
                    "A withdrawal request is already awaiting review",
                    reason="pending_withdrawal",
                    withdrawal_id=pending[0].id,
                )

            withdrawal = Withdrawal(
                id=self.storage.allocate_id(WITHDRAWALS, "WD", user_id),
                user_id=user_id,
                amount=amount,
                payment_method=method,
                account_number=account_number,
                status=ResolutionStatus.PENDING,
                requested_at=datetime.now(timezone.utc),
            )
            self.storage.put(WITHDRAWALS, withdrawal.id, withdrawal.to_document())

        logger.bind(withdrawal_id=withdrawal.id, user_id=user_id, amount=amount).info("Withdrawal requested")
        return withdrawal

    def approve(self, withdrawal_id: str, approver_id: str) -> Withdrawal:
        self.gate.require(approver_id, "approve_withdrawal")
        if not self.storage.contains(WITHDRAWALS, withdrawal_id):
            raise NotFoundError("Withdrawal", withdrawal_id)

        with self.storage.locked((WITHDRAWALS, withdrawal_id)):
            withdrawal = self.get_withdrawal(withdrawal_id)
            if not withdrawal.can_resolve():
                raise InvalidTransitionError("Withdrawal", withdrawal_id, withdrawal.status.value, "approve")

            with self.storage.locked((ACCOUNTS, withdrawal.user_id)):
                account = self.accounts.get_account(withdrawal.user_id)
                if withdrawal.amount > account.balance:
                    logger.bind(
                        withdrawal_id=withdrawal_id,
                        amount=withdrawal.amount,
                        balance=account.balance,
                    ).warning("Withdrawal exceeds current balance")
                    raise InsufficientBalanceError(withdrawal.amount, account.balance)

                self.accounts.apply_ledger_delta(
                    withdrawal.user_id,
                    LedgerDelta(balance=-withdrawal.amount, total_withdrawn=withdrawal.amount),
                )
                approved = withdrawal.model_copy(update={
                    "status": ResolutionStatus.APPROVED,
                    "resolved_at": datetime.now(timezone.utc),
                    "resolved_by": approver_id,
                })
                self.storage.put(WITHDRAWALS, withdrawal_id, approved.to_document())

        logger.bind(
            withdrawal_id=withdrawal_id,
            user_id=withdrawal.user_id,
            amount=withdrawal.amount,
            approved_by=approver_id,
        ).info("Withdrawal approved")
        return approved

    def reject(self, withdrawal_id: str, reason: str, approver_id: str) -> Withdrawal:
        self.gate.require(approver_id, "reject_withdrawal")
        if not self.storage.contains(WITHDRAWALS, withdrawal_id):
            raise NotFoundError("Withdrawal", withdrawal_id)

        with self.storage.locked((WITHDRAWALS, withdrawal_id)):
            withdrawal = self.get_withdrawal(withdrawal_id)
            if not withdrawal.can_resolve():
                raise InvalidTransitionError("Withdrawal", withdrawal_id, withdrawal.status.value, "reject")

            rejected = withdrawal.model_copy(update={
                "status": ResolutionStatus.REJECTED,
                "resolved_at": datetime.now(timezone.utc),
                "resolved_by": approver_id,
                "rejection_reason": reason,
            })
            self.storage.put(WITHDRAWALS, withdrawal_id, rejected.to_document())

        logger.bind(withdrawal_id=withdrawal_id, rejected_by=approver_id, reason=reason).info("Withdrawal rejected")
        return rejected

    def list_pending(self) -> list[Withdrawal]:
        pending = [
            Withdrawal.from_document(d) for d in self.storage.values(WITHDRAWALS)
            if d.get("status") == ResolutionStatus.PENDING
        ]
        pending.sort(key=lambda w: w.requested_at)
        return pending

    def list_for_user(self, user_id: str) -> list[Withdrawal]:
        withdrawals = [
            Withdrawal.from_document(d) for d in self.storage.values(WITHDRAWALS)
            if d.get("user_id") == user_id
        ]
        withdrawals.sort(key=lambda w: w.requested_at)
        return withdrawals

    def count(self, status: Optional[ResolutionStatus] = None) -> int:
        if status is None:
            return self.storage.count(WITHDRAWALS)
        return sum(1 for d in self.storage.values(WITHDRAWALS) if d.get("status") == status)

    def _pending_for_user(self, user_id: str) -> list[Withdrawal]:
        return [w for w in self.list_for_user(user_id) if w.status == ResolutionStatus.PENDING]
