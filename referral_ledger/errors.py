from typing import Any, Optional


class LedgerServiceError(Exception):
    """Base class for every failure the ledger reports to its callers.

    ``details`` carries the structured data a front-end needs to render an
    actionable message without re-deriving numbers itself.
    """

    kind = "LedgerServiceError"
    retryable = False

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, "details": self.details}


class NotFoundError(LedgerServiceError):
    kind = "NotFound"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class AlreadyExistsError(LedgerServiceError):
    kind = "AlreadyExists"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} already exists", entity=entity, id=entity_id)


class InvalidTransitionError(LedgerServiceError):
    kind = "InvalidTransition"

    def __init__(self, entity: str, entity_id: str, status: str, action: str):
        super().__init__(
            f"Cannot {action} {entity.lower()} {entity_id} in {status} state",
            entity=entity, id=entity_id, status=status, action=action,
        )


class InvariantViolationError(LedgerServiceError):
    kind = "InvariantViolation"


class InsufficientBalanceError(LedgerServiceError):
    kind = "InsufficientBalance"

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Amount {requested} exceeds available balance of {available}",
            requested=requested, available=available,
        )


class BelowMinimumError(LedgerServiceError):
    kind = "BelowMinimum"

    def __init__(self, amount: int, minimum: int):
        super().__init__(f"Amount must be at least {minimum}", amount=amount, minimum=minimum)


class NotEligibleError(LedgerServiceError):
    kind = "NotEligible"


class AccessDeniedError(LedgerServiceError):
    kind = "AccessDenied"


class InvalidReferralError(LedgerServiceError):
    kind = "InvalidReferral"


class InvalidRequestError(LedgerServiceError):
    kind = "InvalidRequest"


class RecordInvalidError(LedgerServiceError):
    kind = "RecordInvalid"

    def __init__(self, record_type: str, reason: str, record_id: Optional[str] = None):
        super().__init__(
            f"Stored {record_type} record failed validation",
            record_type=record_type, id=record_id, reason=reason,
        )


class StoreUnavailableError(LedgerServiceError):
    kind = "StoreUnavailable"
    retryable = True
