from typing import Callable, Optional, Union

from loguru import logger

from .accounts import AccountStore
from .config import Settings, get_settings
from .errors import InvalidReferralError, InvalidRequestError
from .gate import ApprovalGate
from .models import (
    Account,
    AdminAction,
    AdminCommand,
    AdminStats,
    BalanceSummary,
    LeaderboardEntry,
    Payment,
    Referral,
    ReferralStatus,
    Registration,
    ResolutionStatus,
    Withdrawal,
)
from .payments import PaymentWorkflow
from .referrals import ReferralTracker
from .storage import InMemoryStorage
from .withdrawals import WithdrawalWorkflow


DEFAULT_REJECTION_REASON = "No reason provided"


class LedgerService:
    """Wires the ledger components together and exposes the command/query surface."""

    def __init__(self, settings: Optional[Settings] = None, storage: Optional[InMemoryStorage] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(lock_timeout=self.settings.store_timeout_seconds)
        self.gate = ApprovalGate(self.settings.admin_id_set)
        self.accounts = AccountStore(self.storage, code_attempts=self.settings.referral_code_attempts)
        self.referrals = ReferralTracker(
            self.storage, self.accounts, commission=self.settings.commission_per_referral
        )
        self.payments = PaymentWorkflow(
            self.storage, self.accounts, self.referrals, self.gate,
            default_amount=self.settings.default_payment_amount,
        )
        self.withdrawals = WithdrawalWorkflow(
            self.storage, self.accounts, self.gate,
            min_paid_referrals=self.settings.min_paid_referrals,
            min_amount=self.settings.min_withdrawal_amount,
        )
        self.admin_handlers: dict[AdminAction, Callable[[str, AdminCommand], Union[Payment, Withdrawal]]] = {
            AdminAction.APPROVE_PAYMENT: self._handle_approve_payment,
            AdminAction.REJECT_PAYMENT: self._handle_reject_payment,
            AdminAction.APPROVE_WITHDRAWAL: self._handle_approve_withdrawal,
            AdminAction.REJECT_WITHDRAWAL: self._handle_reject_withdrawal,
        }

    # Accounts and referrals

    def register(self, user_id: str, display_name: str, referral_code: Optional[str] = None) -> Registration:
        account = self.accounts.create_account(user_id, display_name)

        referral = None
        if referral_code:
            referrer = self.accounts.find_by_referral_code(referral_code)
            if referrer is None:
                logger.debug(f"Unknown referral code {referral_code!r} used by {user_id}")
            else:
                try:
                    referral = self.referrals.record_referral(referrer.id, user_id)
                except InvalidReferralError as e:
                    logger.warning(f"Referral for {user_id} not recorded: {e.message}")
            account = self.accounts.get_account(user_id)

        return Registration(account=account, referral=referral)

    def create_account(self, user_id: str, display_name: str) -> Account:
        return self.accounts.create_account(user_id, display_name)

    def record_referral(self, referrer_id: str, referred_id: str) -> Optional[Referral]:
        return self.referrals.record_referral(referrer_id, referred_id)

    def get_account(self, user_id: str) -> Account:
        return self.accounts.get_account(user_id)

    def list_referrals(self, user_id: str, status: Optional[ReferralStatus] = None) -> list[Referral]:
        self.accounts.get_account(user_id)
        return self.referrals.list_referrals(user_id, status)

    def balance_summary(self, user_id: str) -> BalanceSummary:
        account = self.accounts.get_account(user_id)
        needed = max(0, self.settings.min_paid_referrals - account.paid_referrals)
        return BalanceSummary(
            user_id=account.id,
            balance=account.balance,
            total_earned=account.total_earned,
            total_withdrawn=account.total_withdrawn,
            paid_referrals=account.paid_referrals,
            unpaid_referrals=account.unpaid_referrals,
            total_referrals=account.total_referrals,
            eligible=needed == 0,
            referrals_needed=needed,
            min_paid_referrals=self.settings.min_paid_referrals,
            min_withdrawal_amount=self.settings.min_withdrawal_amount,
            commission_per_referral=self.settings.commission_per_referral,
        )

    def leaderboard(self, limit: Optional[int] = None) -> list[LeaderboardEntry]:
        top = self.accounts.top_referrers(limit or self.settings.leaderboard_size)
        return [
            LeaderboardEntry(rank=i, user_id=a.id, display_name=a.display_name, paid_referrals=a.paid_referrals)
            for i, a in enumerate(top, start=1)
        ]

    def block_user(self, actor_id: str, user_id: str, reason: str = "") -> Account:
        self.gate.require(actor_id, "block_user")
        return self.accounts.block(user_id, reason)

    def unblock_user(self, actor_id: str, user_id: str) -> Account:
        self.gate.require(actor_id, "unblock_user")
        return self.accounts.unblock(user_id)

    # Payments

    def submit_payment(self, user_id: str, proof_reference: str, amount: Optional[int] = None) -> Payment:
        return self.payments.submit(user_id, proof_reference, amount)

    def get_payment(self, payment_id: str) -> Payment:
        return self.payments.get_payment(payment_id)

    def approve_payment(self, payment_id: str, approver_id: str) -> Payment:
        return self.payments.approve(payment_id, approver_id)

    def reject_payment(self, payment_id: str, reason: Optional[str], approver_id: str) -> Payment:
        return self.payments.reject(payment_id, reason or DEFAULT_REJECTION_REASON, approver_id)

    def list_pending_payments(self) -> list[Payment]:
        return self.payments.list_pending()

    # Withdrawals

    def request_withdrawal(self, user_id: str, amount: int, method: str, account_number: str) -> Withdrawal:
        return self.withdrawals.request(user_id, amount, method, account_number)

    def get_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        return self.withdrawals.get_withdrawal(withdrawal_id)

    def approve_withdrawal(self, withdrawal_id: str, approver_id: str) -> Withdrawal:
        return self.withdrawals.approve(withdrawal_id, approver_id)

    def reject_withdrawal(self, withdrawal_id: str, reason: Optional[str], approver_id: str) -> Withdrawal:
        return self.withdrawals.reject(withdrawal_id, reason or DEFAULT_REJECTION_REASON, approver_id)

    def list_pending_withdrawals(self) -> list[Withdrawal]:
        return self.withdrawals.list_pending()

    # Admin

    def admin_stats(self, actor_id: str) -> AdminStats:
        self.gate.require(actor_id, "view_stats")
        return AdminStats(
            total_users=self.accounts.count(),
            total_payments=self.payments.count(),
            pending_payments=self.payments.count(ResolutionStatus.PENDING),
            pending_withdrawals=self.withdrawals.count(ResolutionStatus.PENDING),
        )

    def dispatch(self, actor_id: str, command: AdminCommand) -> Union[Payment, Withdrawal]:
        handler = self.admin_handlers.get(command.action)
        if handler is None:
            raise InvalidRequestError(f"Unsupported admin action {command.action}", action=str(command.action))
        return handler(actor_id, command)

    def _handle_approve_payment(self, actor_id: str, command: AdminCommand) -> Payment:
        return self.approve_payment(command.entity_id, actor_id)

    def _handle_reject_payment(self, actor_id: str, command: AdminCommand) -> Payment:
        return self.reject_payment(command.entity_id, command.reason, actor_id)

    def _handle_approve_withdrawal(self, actor_id: str, command: AdminCommand) -> Withdrawal:
        return self.approve_withdrawal(command.entity_id, actor_id)

    def _handle_reject_withdrawal(self, actor_id: str, command: AdminCommand) -> Withdrawal:
        return self.reject_withdrawal(command.entity_id, command.reason, actor_id)
