"""
Identity & account store.

Owns the account record: identity, referral code, status, balance and
referral counters. ``apply_ledger_delta`` is the only path that changes the
financial fields.
"""

import random
import string
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from .errors import (
    AlreadyExistsError,
    InvariantViolationError,
    NotFoundError,
    StoreUnavailableError,
)
from .models import Account, AccountStatus, LedgerDelta
from .storage import ACCOUNTS, InMemoryStorage


LEDGER_FIELDS = (
    "balance",
    "total_earned",
    "total_withdrawn",
    "paid_referrals",
    "unpaid_referrals",
    "total_referrals",
)

SUFFIX_DIGITS = 3
MAX_SUFFIX_DIGITS = 6


def referral_code_prefix(display_name: str) -> str:
    letters = [c for c in display_name if c in string.ascii_letters]
    return "".join(letters[:3]).upper().ljust(3, "X")


class AccountStore:
    def __init__(
        self,
        storage: InMemoryStorage,
        code_attempts: int = 5,
        rng: Optional[random.Random] = None,
    ):
        self.storage = storage
        self.code_attempts = code_attempts
        self.rng = rng or random.SystemRandom()

    def find_account(self, user_id: str) -> Optional[Account]:
        data = self.storage.get(ACCOUNTS, user_id)
        if data is None:
            return None
        return Account.from_document(data, user_id)

    def get_account(self, user_id: str) -> Account:
        account = self.find_account(user_id)
        if account is None:
            raise NotFoundError("Account", user_id)
        return account

    def find_by_referral_code(self, code: str) -> Optional[Account]:
        owner_id = self.storage.referral_code_index.get(code.strip().upper())
        if owner_id is None:
            return None
        return self.find_account(owner_id)

    def create_account(self, user_id: str, display_name: str) -> Account:
        with self.storage.locked((ACCOUNTS, user_id)):
            if self.storage.contains(ACCOUNTS, user_id):
                raise AlreadyExistsError("Account", user_id)

            now = datetime.now(timezone.utc)
            account = Account(
                id=user_id,
                display_name=display_name,
                referral_code=self._allocate_referral_code(user_id, display_name),
                status=AccountStatus.ACTIVE,
                sequence=self.storage.next_sequence(),
                created_at=now,
                updated_at=now,
            )
            self.storage.put(ACCOUNTS, user_id, account.to_document())

        logger.info(f"Account {user_id} created with referral code {account.referral_code}")
        return account

    def apply_ledger_delta(self, user_id: str, delta: LedgerDelta) -> Account:
        self._require_known(user_id)
        with self.storage.locked((ACCOUNTS, user_id)):
            account = self.get_account(user_id)
            values = {f: getattr(account, f) + getattr(delta, f) for f in LEDGER_FIELDS}

            negative = sorted(f for f, v in values.items() if v < 0)
            if negative:
                raise InvariantViolationError(
                    f"Ledger delta would make {', '.join(negative)} negative for account {user_id}",
                    account_id=user_id, fields=negative, delta=delta.model_dump(),
                )
            if values["total_referrals"] != values["paid_referrals"] + values["unpaid_referrals"]:
                raise InvariantViolationError(
                    f"Referral counters would diverge for account {user_id}",
                    account_id=user_id, invariant="total_referrals", delta=delta.model_dump(),
                )
            if values["balance"] != values["total_earned"] - values["total_withdrawn"]:
                raise InvariantViolationError(
                    f"Balance would diverge from earned minus withdrawn for account {user_id}",
                    account_id=user_id, invariant="balance", delta=delta.model_dump(),
                )

            values["updated_at"] = datetime.now(timezone.utc)
            updated = account.model_copy(update=values)
            self.storage.put(ACCOUNTS, user_id, updated.to_document())

        logger.debug(f"Ledger delta applied to {user_id}: {delta.model_dump(exclude_defaults=True)}")
        return updated

    def set_status(self, user_id: str, status: AccountStatus, reason: Optional[str] = None) -> Account:
        self._require_known(user_id)
        with self.storage.locked((ACCOUNTS, user_id)):
            account = self.get_account(user_id)
            changes: dict = {"status": status, "updated_at": datetime.now(timezone.utc)}
            if status == AccountStatus.BLOCKED:
                changes["block_reason"] = reason or ""
                changes["blocked_at"] = changes["updated_at"]
            else:
                changes["block_reason"] = None
                changes["blocked_at"] = None
            updated = account.model_copy(update=changes)
            self.storage.put(ACCOUNTS, user_id, updated.to_document())

        logger.info(f"Account {user_id} status set to {status.value}")
        return updated

    def block(self, user_id: str, reason: str = "") -> Account:
        return self.set_status(user_id, AccountStatus.BLOCKED, reason)

    def unblock(self, user_id: str) -> Account:
        return self.set_status(user_id, AccountStatus.ACTIVE)

    def top_referrers(self, limit: int = 10) -> list[Account]:
        accounts = [Account.from_document(d) for d in self.storage.values(ACCOUNTS)]
        ranked = [a for a in accounts if a.paid_referrals >= 1]
        ranked.sort(key=lambda a: (-a.paid_referrals, a.sequence))
        return ranked[:limit]

    def count(self) -> int:
        return self.storage.count(ACCOUNTS)

    def _require_known(self, user_id: str) -> None:
        # Accounts are never deleted, so this holds once the lock is taken.
        if not self.storage.contains(ACCOUNTS, user_id):
            raise NotFoundError("Account", user_id)

    def _allocate_referral_code(self, user_id: str, display_name: str) -> str:
        """Claims ``<prefix><digits>``, adding a digit after ``code_attempts`` misses at one width."""
        prefix = referral_code_prefix(display_name)
        attempts = 0
        for digits in range(SUFFIX_DIGITS, MAX_SUFFIX_DIGITS + 1):
            for _ in range(self.code_attempts):
                attempts += 1
                code = f"{prefix}{self.rng.randint(10 ** (digits - 1), 10 ** digits - 1)}"
                if self.storage.claim_referral_code(code, user_id):
                    return code
                logger.debug(f"Referral code {code} taken (attempt {attempts})")
        raise StoreUnavailableError(
            f"Could not allocate a unique referral code after {attempts} attempts",
            account_id=user_id, attempts=attempts,
        )
