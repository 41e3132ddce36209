"""Account store: the contract the auth workflow needs, backed by PostgreSQL."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import asyncpg
import structlog

from src.models.user import Account
from src.services.exceptions import ConflictError

logger = structlog.get_logger(__name__)

_ACCOUNT_COLUMNS = """
    id, name, email, password_hash, role, email_confirmed,
    email_confirmation_token, email_token_expiration, created_at, updated_at
"""


class AccountDirectory(ABC):
    """User store contract.

    Writes are staged until ``commit()``; implementations own the transaction
    boundary. ``create`` and ``update`` raise ``ConflictError`` when the
    store's case-insensitive email uniqueness constraint is violated.
    """

    @abstractmethod
    async def find_by_email(self, email: str, for_update: bool = False) -> Optional[Account]:
        """Look up an account by email (case-insensitive).

        With ``for_update`` the row stays locked until commit or rollback.
        """

    @abstractmethod
    async def find_by_id(self, account_id: UUID) -> Optional[Account]:
        """Look up an account by id."""

    @abstractmethod
    async def find_by_confirmation_token(
        self, token: str, for_update: bool = False
    ) -> Optional[Account]:
        """Look up the account whose stored action token equals ``token``."""

    @abstractmethod
    async def create(self, account: Account) -> Account:
        """Insert a new account."""

    @abstractmethod
    async def update(self, account: Account) -> Account:
        """Persist changes to an existing account."""

    @abstractmethod
    async def delete(self, account_id: UUID) -> bool:
        """Remove an account. Returns False if it did not exist."""

    @abstractmethod
    async def commit(self) -> None:
        """Make staged writes durable."""

    async def rollback(self) -> None:
        """Discard staged writes."""

    async def close(self) -> None:
        """Release any held resources, discarding uncommitted writes."""


def _row_to_account(row) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        password_hash=row["password_hash"],
        role=row["role"],
        email_confirmed=row["email_confirmed"],
        email_confirmation_token=row["email_confirmation_token"],
        email_token_expiration=row["email_token_expiration"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresAccountDirectory(AccountDirectory):
    """Unit of work over the ``users`` table.

    One pooled connection and one transaction are acquired lazily on first
    use and held until ``commit()``, ``rollback()`` or ``close()``.
    """

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool
        self._conn: Optional[asyncpg.Connection] = None
        self._tx = None

    async def _connection(self) -> asyncpg.Connection:
        if self._conn is None:
            self._conn = await self._pool.acquire()
            self._tx = self._conn.transaction()
            await self._tx.start()
        return self._conn

    async def _release(self) -> None:
        if self._conn is not None:
            await self._pool.release(self._conn)
        self._conn = None
        self._tx = None

    async def find_by_email(self, email: str, for_update: bool = False) -> Optional[Account]:
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM users WHERE LOWER(email) = LOWER($1)"
        if for_update:
            query += " FOR UPDATE"

        conn = await self._connection()
        row = await conn.fetchrow(query, email)
        return _row_to_account(row) if row is not None else None

    async def find_by_id(self, account_id: UUID) -> Optional[Account]:
        conn = await self._connection()
        row = await conn.fetchrow(
            f"SELECT {_ACCOUNT_COLUMNS} FROM users WHERE id = $1",
            account_id,
        )
        return _row_to_account(row) if row is not None else None

    async def find_by_confirmation_token(
        self, token: str, for_update: bool = False
    ) -> Optional[Account]:
        # Under READ COMMITTED a waiting FOR UPDATE re-checks the WHERE clause
        # against the committed row, so a consumed token no longer matches.
        query = f"SELECT {_ACCOUNT_COLUMNS} FROM users WHERE email_confirmation_token = $1"
        if for_update:
            query += " FOR UPDATE"

        conn = await self._connection()
        row = await conn.fetchrow(query, token)
        return _row_to_account(row) if row is not None else None

    async def create(self, account: Account) -> Account:
        conn = await self._connection()
        try:
            await conn.execute(
                """
                INSERT INTO users (id, name, email, password_hash, role, email_confirmed,
                                   email_confirmation_token, email_token_expiration,
                                   created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                """,
                account.id,
                account.name,
                account.email,
                account.password_hash,
                account.role,
                account.email_confirmed,
                account.email_confirmation_token,
                account.email_token_expiration,
                account.created_at,
                account.updated_at,
            )
        except asyncpg.UniqueViolationError:
            logger.warning("account_email_conflict", email=account.email)
            raise ConflictError("An account with this email already exists.")

        logger.info("account_created", user_id=str(account.id))
        return account

    async def update(self, account: Account) -> Account:
        conn = await self._connection()
        updated = account.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        try:
            result = await conn.execute(
                """
                UPDATE users
                SET name = $2, email = $3, password_hash = $4, role = $5,
                    email_confirmed = $6, email_confirmation_token = $7,
                    email_token_expiration = $8, updated_at = $9
                WHERE id = $1
                """,
                updated.id,
                updated.name,
                updated.email,
                updated.password_hash,
                updated.role,
                updated.email_confirmed,
                updated.email_confirmation_token,
                updated.email_token_expiration,
                updated.updated_at,
            )
        except asyncpg.UniqueViolationError:
            logger.warning("account_email_conflict", user_id=str(account.id))
            raise ConflictError("An account with this email already exists.")

        if result != "UPDATE 1":
            raise LookupError(f"Account {account.id} vanished during update")

        logger.info("account_updated", user_id=str(account.id))
        return updated

    async def delete(self, account_id: UUID) -> bool:
        conn = await self._connection()
        result = await conn.execute("DELETE FROM users WHERE id = $1", account_id)
        deleted = result == "DELETE 1"

        if deleted:
            logger.info("account_deleted", user_id=str(account_id))
        else:
            logger.warning("account_delete_not_found", user_id=str(account_id))

        return deleted

    async def commit(self) -> None:
        if self._tx is None:
            return
        try:
            await self._tx.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        if self._tx is None:
            return
        try:
            await self._tx.rollback()
        finally:
            await self._release()

    async def close(self) -> None:
        await self.rollback()
