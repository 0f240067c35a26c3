import re
from typing import Optional, Union
import structlog

from errors import (
    AccountNotFoundError,
    BalanceOutOfRangeError,
    InsufficientFundsError,
    InvalidOperationTypeError,
    LedgerError,
    MalformedAmountError,
    MissingAccountIdError,
    NonPositiveAmountError,
)
from models import Account, OperationFailure, OperationRequest, OperationResult, OperationType
from repositories import AccountRepository

logger = structlog.get_logger()

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_AMOUNT_PATTERN = re.compile(r"[+-]?[0-9]+")


def parse_amount(raw: Optional[str]) -> int:
    """Parse an amount string the way a signed 64-bit integer parser would.

    Accepts an optional sign followed by ASCII digits only; no whitespace,
    underscores or decimal point.
    """
    if raw is None or not isinstance(raw, str) or not _AMOUNT_PATTERN.fullmatch(raw):
        raise MalformedAmountError(f"Amount {raw!r} is not an integer")
    value = int(raw)
    if not INT64_MIN <= value <= INT64_MAX:
        raise MalformedAmountError(f"Amount {raw!r} is out of range")
    return value


def _checked_balance(account_id: str, balance: int) -> int:
    if not INT64_MIN <= balance <= INT64_MAX:
        raise BalanceOutOfRangeError(f"Balance of account {account_id} would overflow")
    return balance


class LedgerService:
    """Applies deposit, withdraw and transfer operations to the account store.

    Holds no state between calls. Every read-modify-write runs while the
    repository lock for the affected account ids is held; a transfer locks
    both accounts for the whole operation.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        allow_overdraft: bool = True,
        allow_non_positive_amounts: bool = True,
    ):
        self.account_repo = account_repo
        self.allow_overdraft = allow_overdraft
        self.allow_non_positive_amounts = allow_non_positive_amounts

    async def execute(self, request: OperationRequest) -> Union[OperationResult, OperationFailure]:
        """Apply one operation. Business-rule failures are returned, never raised."""

        logger.info(
            "Processing operation",
            type=request.type,
            amount=request.amount,
            origin=request.origin,
            destination=request.destination
        )

        try:
            operation_type = self._resolve_type(request.type)
            amount = self._parse_amount(request.amount)

            if operation_type == OperationType.deposit:
                result = await self._deposit(request.destination, amount)
            elif operation_type == OperationType.withdraw:
                result = await self._withdraw(request.origin, amount)
            else:
                result = await self._transfer(request.origin, request.destination, amount)
        except LedgerError as exc:
            logger.warning(
                "Operation failed",
                kind=exc.kind.value,
                detail=exc.detail,
                type=request.type,
                origin=request.origin,
                destination=request.destination
            )
            return OperationFailure(kind=exc.kind, detail=exc.detail)

        logger.info(
            "Operation applied",
            type=operation_type.value,
            origin_balance=result.origin.balance if result.origin else None,
            destination_balance=result.destination.balance if result.destination else None
        )
        return result

    async def get_account(self, account_id: str) -> Optional[Account]:
        return await self.account_repo.get(account_id)

    async def get_balance(self, account_id: str) -> Optional[int]:
        account = await self.get_account(account_id)
        logger.debug("Balance lookup", account_id=account_id, found=account is not None)
        return account.balance if account is not None else None

    async def reset(self) -> None:
        await self.account_repo.reset()
        logger.info("Ledger reset")

    def _resolve_type(self, raw: Optional[str]) -> OperationType:
        try:
            return OperationType(raw.lower())
        except (AttributeError, ValueError) as exc:
            raise InvalidOperationTypeError(f"Unknown operation type {raw!r}") from exc

    def _parse_amount(self, raw: Optional[str]) -> int:
        amount = parse_amount(raw)
        if amount <= 0 and not self.allow_non_positive_amounts:
            raise NonPositiveAmountError(f"Amount must be positive, got {amount}")
        return amount

    def _debited_balance(self, account: Account, amount: int) -> int:
        new_balance = _checked_balance(account.id, account.balance - amount)
        if new_balance < 0 and not self.allow_overdraft:
            raise InsufficientFundsError(f"Insufficient funds in account {account.id}")
        return new_balance

    async def _deposit(self, destination: Optional[str], amount: int) -> OperationResult:
        if destination is None:
            raise MissingAccountIdError("Deposit requires a destination account")

        async with self.account_repo.lock(destination):
            current = await self.account_repo.get(destination)
            old_balance = current.balance if current is not None else 0
            new_balance = _checked_balance(destination, old_balance + amount)
            account = await self.account_repo.put(Account(id=destination, balance=new_balance))

        return OperationResult(destination=account)

    async def _withdraw(self, origin: Optional[str], amount: int) -> OperationResult:
        if origin is None:
            raise AccountNotFoundError("Withdraw requires an origin account")

        async with self.account_repo.lock(origin):
            current = await self.account_repo.get(origin)
            if current is None:
                raise AccountNotFoundError(f"Account {origin} not found")
            new_balance = self._debited_balance(current, amount)
            account = await self.account_repo.put(Account(id=origin, balance=new_balance))

        return OperationResult(origin=account)

    async def _transfer(self, origin: Optional[str], destination: Optional[str], amount: int) -> OperationResult:
        if origin is None:
            raise AccountNotFoundError("Transfer requires an origin account")
        if destination is None:
            raise MissingAccountIdError("Transfer requires a destination account")

        async with self.account_repo.lock(origin, destination):
            origin_account = await self.account_repo.get(origin)
            if origin_account is None:
                raise AccountNotFoundError(f"Account {origin} not found")

            if origin == destination:
                # Credit then debit the same record: the balance is unchanged.
                credited = origin_account.model_copy(
                    update={"balance": _checked_balance(origin, origin_account.balance + amount)}
                )
                saved = await self.account_repo.put(
                    Account(id=origin, balance=self._debited_balance(credited, amount))
                )
                return OperationResult(origin=saved, destination=saved)

            destination_account = await self.account_repo.get(destination)
            old_destination_balance = destination_account.balance if destination_account is not None else 0
            destination_balance = _checked_balance(destination, old_destination_balance + amount)
            origin_balance = self._debited_balance(origin_account, amount)

            saved_destination = await self.account_repo.put(Account(id=destination, balance=destination_balance))
            saved_origin = await self.account_repo.put(Account(id=origin, balance=origin_balance))

        return OperationResult(origin=saved_origin, destination=saved_destination)


# Factory function for dependency injection
def get_ledger_service(
    account_repo: AccountRepository,
    allow_overdraft: bool = True,
    allow_non_positive_amounts: bool = True,
) -> LedgerService:
    return LedgerService(account_repo, allow_overdraft, allow_non_positive_amounts)
