"""Shared fixtures for the referral ledger tests."""

import pytest

from referral_ledger.config import Settings
from referral_ledger.service import LedgerService
from referral_ledger.storage import InMemoryStorage


ADMIN_ID = "admin-1"
OUTSIDER_ID = "user-999"

COMMISSION = 250
MIN_PAID_REFERRALS = 4
MIN_AMOUNT = 100


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        commission_per_referral=COMMISSION,
        min_paid_referrals=MIN_PAID_REFERRALS,
        min_withdrawal_amount=MIN_AMOUNT,
        default_payment_amount=500,
        admin_ids=f"{ADMIN_ID}, admin-2",
        store_timeout_seconds=2.0,
    )


@pytest.fixture
def storage(settings):
    return InMemoryStorage(lock_timeout=settings.store_timeout_seconds)


@pytest.fixture
def service(settings, storage):
    return LedgerService(settings=settings, storage=storage)


@pytest.fixture
def referrer(service):
    return service.create_account("referrer", "Abebe")


@pytest.fixture
def refer_and_pay(service):
    """Registers ``count`` users under ``referrer_id`` and approves a payment from each."""

    def _refer_and_pay(referrer_id: str, count: int, prefix: str = "friend") -> list[str]:
        referred_ids = []
        for i in range(count):
            user_id = f"{referrer_id}-{prefix}-{i}"
            service.create_account(user_id, f"Friend {i}")
            service.record_referral(referrer_id, user_id)
            payment = service.submit_payment(user_id, f"photo-{user_id}")
            service.approve_payment(payment.id, ADMIN_ID)
            referred_ids.append(user_id)
        return referred_ids

    return _refer_and_pay


def assert_invariants(account):
    assert account.total_referrals == account.paid_referrals + account.unpaid_referrals
    assert account.balance == account.total_earned - account.total_withdrawn
    assert account.balance >= 0
