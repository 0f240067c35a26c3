from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Optional
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from models import Account


class AccountRepository(ABC):
    @abstractmethod
    async def get(self, account_id: str) -> Optional[Account]:
        """Get a copy of the account. Returns None if account doesn't exist."""
        pass

    @abstractmethod
    async def put(self, account: Account) -> Account:
        """Create or overwrite the account stored under account.id."""
        pass

    @abstractmethod
    async def reset(self) -> None:
        """Remove every account."""
        pass

    @abstractmethod
    async def get_accounts_count(self) -> int:
        """Get total number of accounts."""
        pass

    @abstractmethod
    def lock(self, *account_ids: str):
        """Async context manager holding exclusive access to the given accounts."""
        pass


class InMemoryAccountRepository(AccountRepository):
    """Account store backed by a dict, with one asyncio lock per account id.

    A lock lives only while some coroutine holds or waits for it: every
    `lock()` call counts itself as a user of each id before acquiring, and
    the entry is dropped once the last user leaves. Contenders for an id
    therefore always share one lock object, and the lock map stays bounded
    by the number of in-flight operations. Multiple locks are always taken
    in ascending id order.
    """

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.lock_users: Dict[str, int] = {}

    async def get(self, account_id: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        return account.model_copy() if account is not None else None

    async def put(self, account: Account) -> Account:
        self.accounts[account.id] = account.model_copy()
        return account.model_copy()

    async def reset(self) -> None:
        # Waits for every in-flight read-modify-write before clearing
        async with self.lock(*list(self.locks)):
            self.accounts.clear()

    async def get_accounts_count(self) -> int:
        return len(self.accounts)

    def get_lock(self, account_id: str) -> Optional[asyncio.Lock]:
        """Get the live lock for an account, if any coroutine is using it."""
        return self.locks.get(account_id)

    def _enter(self, account_id: str) -> asyncio.Lock:
        self.lock_users[account_id] = self.lock_users.get(account_id, 0) + 1
        return self.locks.setdefault(account_id, asyncio.Lock())

    def _leave(self, account_id: str) -> None:
        remaining = self.lock_users[account_id] - 1
        if remaining:
            self.lock_users[account_id] = remaining
        else:
            del self.lock_users[account_id]
            del self.locks[account_id]

    @asynccontextmanager
    async def lock(self, *account_ids: str) -> AsyncIterator[None]:
        ordered = sorted(set(account_ids))
        locks = [self._enter(account_id) for account_id in ordered]
        try:
            async with AsyncExitStack() as stack:
                for account_lock in locks:
                    await stack.enter_async_context(account_lock)
                yield
        finally:
            for account_id in ordered:
                self._leave(account_id)


# Singleton instance (em produção, usar dependency injection)
_account_repo = InMemoryAccountRepository()


def get_account_repository() -> AccountRepository:
    return _account_repo


# Para testes
def reset_repositories():
    """Replace the repository with a fresh, empty one (for testing only)."""
    global _account_repo
    _account_repo = InMemoryAccountRepository()
