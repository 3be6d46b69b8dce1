from typing import Optional, Union

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import LedgerServiceError
from .logger import setup_logging
from .models import (
    Account, AdminCommand, AdminStats, BalanceSummary, BlockRequest, CreateAccountRequest,
    LeaderboardEntry, Payment, Referral, Registration, RejectRequest, SubmitPaymentRequest,
    Withdrawal, WithdrawalRequest,
)
from .service import LedgerService


ERROR_STATUS_CODES = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "AlreadyExists": status.HTTP_409_CONFLICT,
    "InvalidTransition": status.HTTP_409_CONFLICT,
    "AccessDenied": status.HTTP_403_FORBIDDEN,
    "NotEligible": 422,
    "BelowMinimum": 422,
    "InsufficientBalance": 422,
    "InvalidReferral": 422,
    "InvalidRequest": 422,
    "InvariantViolation": 422,
    "RecordInvalid": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "StoreUnavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerServiceError)
    async def _ledger_error_handler(_: Request, exc: LedgerServiceError):
        headers = {"Retry-After": "1"} if exc.retryable else None
        return JSONResponse(
            status_code=ERROR_STATUS_CODES.get(exc.kind, status.HTTP_400_BAD_REQUEST),
            content=exc.to_dict(),
            headers=headers,
        )


def create_app(service: Optional[LedgerService] = None) -> FastAPI:
    settings = service.settings if service else get_settings()
    setup_logging(settings.log_level, settings.log_file)

    app = FastAPI(
        title="Referral Ledger API",
        description="Referral commissions, payment verification and withdrawals under admin approval",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.ledger_service = service or LedgerService(settings)
    register_exception_handlers(app)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "referral-ledger"}

    @app.post("/accounts", response_model=Registration, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def create_account(request: CreateAccountRequest, service: LedgerService = Depends(get_service)) -> Registration:
        return service.register(request.user_id, request.display_name, request.referral_code)

    @app.get("/accounts/{user_id}", response_model=Account, tags=["Accounts"])
    def get_account(user_id: str, service: LedgerService = Depends(get_service)) -> Account:
        return service.get_account(user_id)

    @app.get("/accounts/{user_id}/balance", response_model=BalanceSummary, tags=["Accounts"])
    def get_balance(user_id: str, service: LedgerService = Depends(get_service)) -> BalanceSummary:
        return service.balance_summary(user_id)

    @app.get("/accounts/{user_id}/referrals", response_model=list[Referral], tags=["Accounts"])
    def get_referrals(user_id: str, service: LedgerService = Depends(get_service)) -> list[Referral]:
        return service.list_referrals(user_id)

    @app.post("/accounts/{user_id}/block", response_model=Account, tags=["Admin"])
    def block_account(
        user_id: str,
        request: BlockRequest,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Account:
        return service.block_user(x_actor_id, user_id, request.reason)

    @app.post("/accounts/{user_id}/unblock", response_model=Account, tags=["Admin"])
    def unblock_account(
        user_id: str,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Account:
        return service.unblock_user(x_actor_id, user_id)

    @app.get("/leaderboard", response_model=list[LeaderboardEntry], tags=["Accounts"])
    def get_leaderboard(limit: Optional[int] = None, service: LedgerService = Depends(get_service)):
        return service.leaderboard(limit)

    @app.post("/payments", response_model=Payment, status_code=status.HTTP_201_CREATED, tags=["Payments"])
    def submit_payment(request: SubmitPaymentRequest, service: LedgerService = Depends(get_service)) -> Payment:
        return service.submit_payment(request.user_id, request.proof_reference, request.amount)

    @app.get("/payments/pending", response_model=list[Payment], tags=["Payments"])
    def pending_payments(service: LedgerService = Depends(get_service)) -> list[Payment]:
        return service.list_pending_payments()

    @app.get("/payments/{payment_id}", response_model=Payment, tags=["Payments"])
    def get_payment(payment_id: str, service: LedgerService = Depends(get_service)) -> Payment:
        return service.get_payment(payment_id)

    @app.post("/payments/{payment_id}/approve", response_model=Payment, tags=["Payments"])
    def approve_payment(
        payment_id: str,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Payment:
        return service.approve_payment(payment_id, x_actor_id)

    @app.post("/payments/{payment_id}/reject", response_model=Payment, tags=["Payments"])
    def reject_payment(
        payment_id: str,
        request: RejectRequest,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Payment:
        return service.reject_payment(payment_id, request.reason, x_actor_id)

    @app.post("/withdrawals", response_model=Withdrawal, status_code=status.HTTP_201_CREATED, tags=["Withdrawals"])
    def request_withdrawal(request: WithdrawalRequest, service: LedgerService = Depends(get_service)) -> Withdrawal:
        return service.request_withdrawal(
            request.user_id, request.amount, request.payment_method, request.account_number
        )

    @app.get("/withdrawals/pending", response_model=list[Withdrawal], tags=["Withdrawals"])
    def pending_withdrawals(service: LedgerService = Depends(get_service)) -> list[Withdrawal]:
        return service.list_pending_withdrawals()

    @app.get("/withdrawals/{withdrawal_id}", response_model=Withdrawal, tags=["Withdrawals"])
    def get_withdrawal(withdrawal_id: str, service: LedgerService = Depends(get_service)) -> Withdrawal:
        return service.get_withdrawal(withdrawal_id)

    @app.post("/withdrawals/{withdrawal_id}/approve", response_model=Withdrawal, tags=["Withdrawals"])
    def approve_withdrawal(
        withdrawal_id: str,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Withdrawal:
        return service.approve_withdrawal(withdrawal_id, x_actor_id)

    @app.post("/withdrawals/{withdrawal_id}/reject", response_model=Withdrawal, tags=["Withdrawals"])
    def reject_withdrawal(
        withdrawal_id: str,
        request: RejectRequest,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> Withdrawal:
        return service.reject_withdrawal(withdrawal_id, request.reason, x_actor_id)

    @app.post("/admin/actions", response_model=Union[Payment, Withdrawal], tags=["Admin"])
    def admin_action(
        command: AdminCommand,
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ):
        return service.dispatch(x_actor_id, command)

    @app.get("/admin/stats", response_model=AdminStats, tags=["Admin"])
    def admin_stats(
        x_actor_id: Optional[str] = Header(default=None),
        service: LedgerService = Depends(get_service),
    ) -> AdminStats:
        return service.admin_stats(x_actor_id)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
