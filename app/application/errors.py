"""
Ledger error taxonomy.

Every error carries a stable machine-readable code, the HTTP status the API
layer answers with, and whether the caller may retry the same request.
"""


class LedgerError(Exception):
    """Base ledger error."""

    code = "LEDGER_ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "retryable": self.retryable}


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"
    status_code = 422

    def __init__(self, amount, reason: str = "must be positive") -> None:
        self.amount = amount
        super().__init__(f"Contribution amount {reason}, got {amount}")


class GoalNotFound(LedgerError):
    code = "GOAL_NOT_FOUND"
    status_code = 404

    def __init__(self, goal_id: int) -> None:
        self.goal_id = goal_id
        super().__init__(f"Saving goal {goal_id} not found")


class AlreadyCompleted(LedgerError):
    code = "GOAL_ALREADY_COMPLETED"
    status_code = 409

    def __init__(self, goal_id: int) -> None:
        self.goal_id = goal_id
        super().__init__("Cannot add contribution to completed saving goal")


class DuplicateContribution(LedgerError):
    """The triggering event (idempotency key / transaction) was already applied."""
    code = "DUPLICATE_CONTRIBUTION"
    status_code = 409

    def __init__(self, key: str | None) -> None:
        self.key = key
        super().__init__(f"Contribution already recorded for {key}")


class NotDue(LedgerError):
    """A recurring debit whose period was already covered by another contribution."""
    code = "NOT_DUE"
    status_code = 409

    def __init__(self, goal_id: int) -> None:
        self.goal_id = goal_id
        super().__init__(f"Saving goal {goal_id} already has a contribution this period")


class TransactionNotFound(LedgerError):
    # Retryable so that a webhook racing ahead of the initiating request is
    # redelivered later by the provider.
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404
    retryable = True

    def __init__(self, transaction_id) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class StorageUnavailable(LedgerError):
    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Ledger store unavailable, retry later") -> None:
        super().__init__(message)


class Forbidden(LedgerError):
    code = "FORBIDDEN"
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class SavingsValidationError(ValueError):
    """Invalid savings goal input"""
    pass


class PaymentValidationError(ValueError):
    """Invalid payment input"""
    pass
