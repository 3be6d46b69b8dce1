from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from .accounts import AccountStore
from .errors import InvalidReferralError, NotFoundError
from .models import LedgerDelta, Referral, ReferralStatus
from .storage import ACCOUNTS, REFERRALS, InMemoryStorage


class ReferralTracker:
    """Referrer -> referred relationships, keyed by the referred user.

    A referred user carries at most one referral, so the payer of an
    approved payment identifies exactly one referrer to credit.
    """

    def __init__(self, storage: InMemoryStorage, accounts: AccountStore, commission: int):
        self.storage = storage
        self.accounts = accounts
        self.commission = commission

    def get_referral(self, referred_id: str) -> Optional[Referral]:
        data = self.storage.get(REFERRALS, referred_id)
        return Referral.from_document(data, referred_id) if data else None

    def list_referrals(self, referrer_id: str, status: Optional[ReferralStatus] = None) -> list[Referral]:
        referrals = [
            Referral.from_document(d) for d in self.storage.values(REFERRALS)
            if d.get("referrer_id") == referrer_id
        ]
        if status:
            referrals = [r for r in referrals if r.status == status]
        referrals.sort(key=lambda r: r.created_at)
        return referrals

    def record_referral(self, referrer_id: str, referred_id: str) -> Optional[Referral]:
        if referrer_id == referred_id:
            raise InvalidReferralError(
                "Users cannot refer themselves", referrer_id=referrer_id, referred_id=referred_id
            )
        if not self.storage.contains(ACCOUNTS, referred_id):
            raise NotFoundError("Account", referred_id)
        if not self.storage.contains(ACCOUNTS, referrer_id):
            logger.debug(f"Referral of {referred_id} ignored: referrer {referrer_id} unknown")
            return None

        with self.storage.locked((REFERRALS, referred_id), (ACCOUNTS, referrer_id)):
            referrer = self.accounts.find_account(referrer_id)
            if referrer is None or referrer.is_blocked:
                logger.debug(f"Referral of {referred_id} ignored: referrer {referrer_id} unavailable")
                return None
            if self.storage.contains(REFERRALS, referred_id):
                logger.debug(f"Referral of {referred_id} ignored: already referred")
                return None

            referral = Referral(
                referrer_id=referrer_id,
                referred_id=referred_id,
                status=ReferralStatus.PENDING,
                created_at=datetime.now(timezone.utc),
            )
            self.accounts.apply_ledger_delta(
                referrer_id, LedgerDelta(unpaid_referrals=1, total_referrals=1)
            )
            self.storage.put(REFERRALS, referred_id, referral.to_document())

        logger.info(f"Referral recorded: {referrer_id} -> {referred_id}")
        return referral

    def mark_paid(self, referred_id: str, referrer_id: Optional[str] = None) -> Optional[Referral]:
        """Pays the commission for ``referred_id``'s pending referral.

        Returns the paid referral, or None when there is nothing pending
        (never referred, already paid, or ``referrer_id`` does not match).
        """
        with self.storage.locked((REFERRALS, referred_id)):
            referral = self.get_referral(referred_id)
            if referral is None or referral.status != ReferralStatus.PENDING:
                logger.debug(f"No pending referral for {referred_id}")
                return None
            if referrer_id is not None and referral.referrer_id != referrer_id:
                logger.debug(f"Referral for {referred_id} belongs to {referral.referrer_id}, not {referrer_id}")
                return None

            self.accounts.apply_ledger_delta(
                referral.referrer_id,
                LedgerDelta(
                    paid_referrals=1,
                    unpaid_referrals=-1,
                    balance=self.commission,
                    total_earned=self.commission,
                ),
            )
            paid = referral.model_copy(update={
                "status": ReferralStatus.PAID,
                "commission": self.commission,
                "paid_at": datetime.now(timezone.utc),
            })
            self.storage.put(REFERRALS, referred_id, paid.to_document())

        logger.info(f"Referral {referral.referrer_id} -> {referred_id} paid, commission {self.commission}")
        return paid
