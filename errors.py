from models import FailureKind


class LedgerError(Exception):
    """Base class for business-rule failures raised while applying an operation."""

    kind: FailureKind

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class InvalidOperationTypeError(LedgerError):
    """Raised when the operation type is not deposit, withdraw or transfer."""

    kind = FailureKind.invalid_operation_type


class MalformedAmountError(LedgerError):
    """Raised when the amount does not parse as a signed 64-bit integer."""

    kind = FailureKind.malformed_amount


class AccountNotFoundError(LedgerError):
    """Raised when a required origin account is missing from the store."""

    kind = FailureKind.account_not_found


class MissingAccountIdError(LedgerError):
    """Raised when a deposit or transfer names no destination account."""

    kind = FailureKind.missing_account_id


class NonPositiveAmountError(LedgerError):
    kind = FailureKind.non_positive_amount


class InsufficientFundsError(LedgerError):
    """Raised when a withdrawal/transfer would drop balance below zero."""

    kind = FailureKind.insufficient_funds


class BalanceOutOfRangeError(LedgerError):
    kind = FailureKind.balance_out_of_range
