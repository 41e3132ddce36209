"""Unit tests for the PostgreSQL account directory."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from src.models.user import Account
from src.services.account_directory import PostgresAccountDirectory
from src.services.exceptions import ConflictError


def _make_account(**overrides) -> Account:
    now = datetime.now(timezone.utc)
    fields = {
        "id": uuid4(),
        "name": "Alice",
        "email": "alice@x.com",
        "password_hash": "$2b$04$hash",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Account(**fields)


def _row(account: Account) -> dict:
    return account.model_dump()


@pytest.fixture
def mock_pool():
    """Create mock pool whose connection hands out a mock transaction."""
    mock_tx = MagicMock()
    mock_tx.start = AsyncMock()
    mock_tx.commit = AsyncMock()
    mock_tx.rollback = AsyncMock()

    mock_conn = MagicMock()
    mock_conn.fetchrow = AsyncMock(return_value=None)
    mock_conn.execute = AsyncMock()
    mock_conn.transaction.return_value = mock_tx

    mock_pool = MagicMock()
    mock_pool.acquire = AsyncMock(return_value=mock_conn)
    mock_pool.release = AsyncMock()

    return mock_pool, mock_conn, mock_tx


@pytest.fixture
def directory(mock_pool):
    pool, _, _ = mock_pool
    return PostgresAccountDirectory(pool)


class TestLookups:
    """Tests for the find_* queries."""

    async def test_find_by_email_is_case_insensitive_query(self, directory, mock_pool):
        _, conn, _ = mock_pool
        account = _make_account()
        conn.fetchrow.return_value = _row(account)

        found = await directory.find_by_email("ALICE@x.com")

        assert found == account
        query, arg = conn.fetchrow.call_args.args
        assert "LOWER(email) = LOWER($1)" in query
        assert arg == "ALICE@x.com"

    async def test_find_by_id_missing(self, directory, mock_pool):
        _, conn, _ = mock_pool
        assert await directory.find_by_id(uuid4()) is None

    async def test_find_by_confirmation_token(self, directory, mock_pool):
        _, conn, _ = mock_pool
        account = _make_account(email_confirmation_token="tok")
        conn.fetchrow.return_value = _row(account)

        found = await directory.find_by_confirmation_token("tok")

        assert found.email_confirmation_token == "tok"
        assert "email_confirmation_token = $1" in conn.fetchrow.call_args.args[0]
        assert "FOR UPDATE" not in conn.fetchrow.call_args.args[0]

    @pytest.mark.parametrize(
        "method,arg",
        [("find_by_email", "a@x.com"), ("find_by_confirmation_token", "tok")],
    )
    async def test_lookup_can_lock_row(self, directory, mock_pool, method, arg):
        _, conn, tx = mock_pool

        await getattr(directory, method)(arg, for_update=True)

        query = conn.fetchrow.call_args.args[0]
        assert query.rstrip().endswith("FOR UPDATE")
        tx.start.assert_awaited_once()


class TestUnitOfWork:
    """Tests for connection and transaction handling."""

    async def test_connection_acquired_once(self, directory, mock_pool):
        pool, _, tx = mock_pool

        await directory.find_by_email("a@x.com")
        await directory.find_by_id(uuid4())

        pool.acquire.assert_awaited_once()
        tx.start.assert_awaited_once()

    async def test_commit_releases_connection(self, directory, mock_pool):
        pool, conn, tx = mock_pool
        await directory.find_by_email("a@x.com")

        await directory.commit()

        tx.commit.assert_awaited_once()
        pool.release.assert_awaited_once_with(conn)

    async def test_commit_without_work_is_noop(self, directory, mock_pool):
        pool, _, tx = mock_pool
        await directory.commit()
        tx.commit.assert_not_awaited()
        pool.acquire.assert_not_awaited()

    async def test_close_rolls_back_uncommitted(self, directory, mock_pool):
        pool, conn, tx = mock_pool
        await directory.create(_make_account())

        await directory.close()

        tx.rollback.assert_awaited_once()
        tx.commit.assert_not_awaited()
        pool.release.assert_awaited_once_with(conn)

    async def test_close_after_commit_does_nothing(self, directory, mock_pool):
        pool, _, tx = mock_pool
        await directory.find_by_email("a@x.com")
        await directory.commit()

        await directory.close()

        tx.rollback.assert_not_awaited()
        assert pool.release.await_count == 1

    async def test_release_even_if_commit_fails(self, directory, mock_pool):
        pool, conn, tx = mock_pool
        tx.commit.side_effect = asyncpg.PostgresError("boom")
        await directory.find_by_email("a@x.com")

        with pytest.raises(asyncpg.PostgresError):
            await directory.commit()
        pool.release.assert_awaited_once_with(conn)


class TestWrites:
    """Tests for create/update/delete."""

    async def test_create_inserts_row(self, directory, mock_pool):
        _, conn, _ = mock_pool
        account = _make_account()

        result = await directory.create(account)

        assert result == account
        args = conn.execute.call_args.args
        assert "INSERT INTO users" in args[0]
        assert args[1] == account.id
        assert args[3] == "alice@x.com"

    async def test_create_unique_violation_is_conflict(self, directory, mock_pool):
        _, conn, _ = mock_pool
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(ConflictError):
            await directory.create(_make_account())

    async def test_update_refreshes_updated_at(self, directory, mock_pool):
        _, conn, _ = mock_pool
        conn.execute.return_value = "UPDATE 1"
        account = _make_account(updated_at=datetime(2020, 1, 1, tzinfo=timezone.utc))

        updated = await directory.update(account)

        assert updated.updated_at > account.updated_at
        assert "UPDATE users" in conn.execute.call_args.args[0]

    async def test_update_unique_violation_is_conflict(self, directory, mock_pool):
        _, conn, _ = mock_pool
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(ConflictError):
            await directory.update(_make_account())

    async def test_update_missing_row_raises(self, directory, mock_pool):
        _, conn, _ = mock_pool
        conn.execute.return_value = "UPDATE 0"

        with pytest.raises(LookupError):
            await directory.update(_make_account())

    @pytest.mark.parametrize("status,expected", [("DELETE 1", True), ("DELETE 0", False)])
    async def test_delete(self, directory, mock_pool, status, expected):
        _, conn, _ = mock_pool
        conn.execute.return_value = status
        assert await directory.delete(uuid4()) is expected
