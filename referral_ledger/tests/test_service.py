"""
Tests for the LedgerService facade

Tests cover:
1. Registration through a referral code
2. The full referral -> payout -> withdrawal scenario
3. Typed admin command dispatch
4. Balance summary, leaderboard and admin stats
"""

import pytest
from loguru import logger

import referral_ledger
from referral_ledger.config import Settings
from referral_ledger.errors import AccessDeniedError, InvalidTransitionError, LedgerServiceError, NotEligibleError
from referral_ledger.logger import setup_logging
from referral_ledger.models import AdminAction, AdminCommand, Payment, ReferralStatus, ResolutionStatus, Withdrawal
from referral_ledger.service import LedgerService

from conftest import ADMIN_ID, COMMISSION, MIN_AMOUNT, MIN_PAID_REFERRALS, OUTSIDER_ID, assert_invariants


class TestRegistration:
    """Tests for register()."""

    def test_register_with_referral_code(self, service, referrer):
        registration = service.register("u1", "Kebede", referrer.referral_code)

        assert registration.account.id == "u1"
        assert registration.referral.referrer_id == referrer.id
        assert service.get_account(referrer.id).unpaid_referrals == 1

    def test_register_with_unknown_code(self, service):
        registration = service.register("u1", "Kebede", "ZZZ000")

        assert registration.referral is None
        assert registration.account.total_referrals == 0

    def test_register_without_code(self, service):
        registration = service.register("u1", "Kebede")

        assert registration.referral is None

    def test_register_blocked_referrer_code(self, service, referrer):
        service.block_user(ADMIN_ID, referrer.id, "spam")

        registration = service.register("u1", "Kebede", referrer.referral_code)

        assert registration.referral is None
        assert service.get_account(referrer.id).total_referrals == 0


class TestReferralScenario:
    """End-to-end referral payout and withdrawal."""

    def test_four_paid_referrals_unlock_withdrawal(self, service, referrer):
        referred = []
        for i in range(MIN_PAID_REFERRALS):
            user_id = f"u{i}"
            service.register(user_id, f"Friend {i}", referrer.referral_code)
            referred.append(user_id)

        payments = [service.submit_payment(user_id, f"photo-{user_id}") for user_id in referred]

        for payment in payments[:-1]:
            service.approve_payment(payment.id, ADMIN_ID)
            assert_invariants(service.get_account(referrer.id))

        with pytest.raises(NotEligibleError):
            service.request_withdrawal(referrer.id, MIN_AMOUNT, "telebirr", "251912345678")

        service.approve_payment(payments[-1].id, ADMIN_ID)
        account = service.get_account(referrer.id)
        assert account.paid_referrals == MIN_PAID_REFERRALS
        assert account.unpaid_referrals == 0
        assert account.balance == 1000

        withdrawal = service.request_withdrawal(referrer.id, MIN_AMOUNT, "telebirr", "251912345678")
        service.approve_withdrawal(withdrawal.id, ADMIN_ID)

        account = service.get_account(referrer.id)
        assert account.balance == 900
        assert account.total_withdrawn == 100
        assert account.total_earned == 1000
        assert_invariants(account)
        assert all(r.status == ReferralStatus.PAID for r in service.list_referrals(referrer.id))


class TestAdminDispatch:
    """Tests for typed admin commands."""

    def test_dispatch_approve_payment(self, service, referrer):
        service.register("u1", "Kebede", referrer.referral_code)
        payment = service.submit_payment("u1", "photo")

        result = service.dispatch(ADMIN_ID, AdminCommand(action=AdminAction.APPROVE_PAYMENT, entity_id=payment.id))

        assert isinstance(result, Payment)
        assert result.status == ResolutionStatus.APPROVED
        assert service.get_account(referrer.id).balance == COMMISSION

    def test_dispatch_reject_payment(self, service):
        service.register("u1", "Kebede")
        payment = service.submit_payment("u1", "photo")

        result = service.dispatch(
            ADMIN_ID,
            AdminCommand(action=AdminAction.REJECT_PAYMENT, entity_id=payment.id, reason="Unreadable"),
        )

        assert result.status == ResolutionStatus.REJECTED
        assert result.rejection_reason == "Unreadable"

    def test_dispatch_withdrawal_actions(self, service, referrer, refer_and_pay):
        refer_and_pay(referrer.id, MIN_PAID_REFERRALS)
        first = service.request_withdrawal(referrer.id, 200, "telebirr", "251912345678")

        rejected = service.dispatch(ADMIN_ID, AdminCommand(action="reject_withdrawal", entity_id=first.id))
        assert isinstance(rejected, Withdrawal)
        assert rejected.rejection_reason == "No reason provided"

        second = service.request_withdrawal(referrer.id, 200, "telebirr", "251912345678")
        approved = service.dispatch(ADMIN_ID, AdminCommand(action="approve_withdrawal", entity_id=second.id))
        assert approved.status == ResolutionStatus.APPROVED
        assert service.get_account(referrer.id).total_withdrawn == 200

    def test_dispatch_checks_actor(self, service):
        service.register("u1", "Kebede")
        payment = service.submit_payment("u1", "photo")

        with pytest.raises(AccessDeniedError):
            service.dispatch(OUTSIDER_ID, AdminCommand(action=AdminAction.APPROVE_PAYMENT, entity_id=payment.id))

    def test_dispatch_repeated_command(self, service):
        service.register("u1", "Kebede")
        payment = service.submit_payment("u1", "photo")
        command = AdminCommand(action=AdminAction.APPROVE_PAYMENT, entity_id=payment.id)
        service.dispatch(ADMIN_ID, command)

        with pytest.raises(InvalidTransitionError):
            service.dispatch(ADMIN_ID, command)


class TestQueries:
    """Tests for read-side helpers."""

    def test_balance_summary_needed_referrals(self, service, referrer, refer_and_pay):
        refer_and_pay(referrer.id, 1)

        summary = service.balance_summary(referrer.id)

        assert summary.balance == COMMISSION
        assert summary.paid_referrals == 1
        assert summary.eligible is False
        assert summary.referrals_needed == MIN_PAID_REFERRALS - 1
        assert summary.min_withdrawal_amount == MIN_AMOUNT
        assert summary.commission_per_referral == COMMISSION

    def test_balance_summary_eligible(self, service, referrer, refer_and_pay):
        refer_and_pay(referrer.id, MIN_PAID_REFERRALS + 1)

        summary = service.balance_summary(referrer.id)

        assert summary.eligible is True
        assert summary.referrals_needed == 0

    def test_leaderboard(self, service, refer_and_pay):
        for user_id, count in [("a", 1), ("b", 3), ("c", 1)]:
            service.create_account(user_id, user_id.upper())
            refer_and_pay(user_id, count)

        board = service.leaderboard()

        assert [(e.rank, e.user_id, e.paid_referrals) for e in board] == [(1, "b", 3), (2, "a", 1), (3, "c", 1)]
        assert len(service.leaderboard(limit=1)) == 1

    def test_admin_stats(self, service, referrer):
        service.register("u1", "Kebede", referrer.referral_code)
        service.register("u2", "Tigist", referrer.referral_code)
        first = service.submit_payment("u1", "photo-1")
        service.submit_payment("u2", "photo-2")
        service.approve_payment(first.id, ADMIN_ID)

        stats = service.admin_stats(ADMIN_ID)

        assert stats.total_users == 3
        assert stats.total_payments == 2
        assert stats.pending_payments == 1
        assert stats.pending_withdrawals == 0

    def test_admin_stats_requires_admin(self, service):
        with pytest.raises(AccessDeniedError):
            service.admin_stats(OUTSIDER_ID)

    def test_block_requires_admin(self, service, referrer):
        with pytest.raises(AccessDeniedError):
            service.block_user(OUTSIDER_ID, referrer.id)

        blocked = service.block_user(ADMIN_ID, referrer.id, "spam")
        assert blocked.is_blocked
        assert service.unblock_user(ADMIN_ID, referrer.id).is_blocked is False


class TestSettings:
    """Tests for configuration parsing."""

    def test_admin_ids_parsed(self):
        settings = Settings(_env_file=None, admin_ids=" 1, 2 ,,3 ")

        assert settings.admin_id_set == frozenset({"1", "2", "3"})

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("COMMISSION_PER_REFERRAL", "300")
        monkeypatch.setenv("ADMIN_IDS", "42")

        service = LedgerService(settings=Settings(_env_file=None))

        assert service.referrals.commission == 300
        assert service.gate.is_privileged("42")
        assert not service.gate.is_privileged("43")


class TestLogging:
    """Tests for the loguru sink setup."""

    def test_bound_context_reaches_log_file(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        setup_logging("INFO", str(log_file))
        try:
            logger.bind(payment_id="PAY_u1_1").info("Payment approved")
        finally:
            logger.remove()
            setup_logging("INFO")

        content = log_file.read_text(encoding="utf-8")
        assert "Payment approved" in content
        assert "PAY_u1_1" in content


class TestErrors:
    """Tests for the exported error hierarchy."""

    def test_every_exported_error_shares_the_base(self):
        errors = [getattr(referral_ledger, name) for name in referral_ledger.__all__ if name.endswith("Error")]

        assert LedgerServiceError in errors
        assert len(errors) == 13
        assert all(issubclass(error, LedgerServiceError) for error in errors)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
