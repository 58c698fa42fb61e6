"""
SQLite Storage Implementation

DESIGN DECISION: SQLite (through aiosqlite) is the ledger backend because:
1. Real transactions: every multi-row ledger write is all-or-nothing
2. No server to run; a single file (or ':memory:' for tests)
3. Foreign keys and CHECK constraints back up the ledger invariants

TRADEOFFS:
- One writer at a time. We serialize every operation on one connection
  behind an asyncio lock and rely on SQLite for atomicity.
- No decimal type. Amounts are stored as exact decimal TEXT and summed
  in Python.

The implementation follows the abstract interface, so the ledger services
never see SQL or driver exceptions.
"""

import asyncio
import contextvars
import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import aiosqlite
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.audit import ActivityAction, ActivityEvent, ActivitySeverity
from src.models.directory import (
    Category,
    Friendship,
    FriendshipStatus,
    Group,
    GroupMember,
    MemberRole,
    MemberStatus,
    User,
    canonical_pair,
)
from src.models.identity import Invitation, InvitationStatus, PendingParticipant
from src.models.ledger import (
    Expense,
    ExpenseKind,
    Payment,
    Settlement,
    SettlementStatus,
    Split,
    SplitType,
)
from src.models.common import utcnow
from src.models.participant import ParticipantRef, PendingRef, UserRef
from src.models.recurring import (
    RecurringTemplate,
    RepeatInterval,
    TemplatePayment,
    TemplateSplit,
)
from src.services.storage.interface import (
    DuplicateError,
    ExpenseQuery,
    LedgerStorage,
    StorageConnectionError,
    StorageError,
)
from src.services.storage.schema import init_schema


logger = structlog.get_logger(__name__)


# =============================================================================
# COLUMN CONVERSION
# =============================================================================

def _id(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def _uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _dec_text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _date_text(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _dt_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _ref(user_id: Optional[str], pending_id: Optional[str]) -> ParticipantRef:
    if user_id:
        return UserRef(user_id=UUID(user_id))
    return PendingRef(pending_id=UUID(pending_id))


def _ref_columns(ref: ParticipantRef) -> tuple[Optional[str], Optional[str]]:
    """Split a participant reference into (user_id, pending_user_id) columns."""
    if ref.is_pending:
        return None, str(ref.id)
    return str(ref.id), None


def _ref_clause(ref: ParticipantRef, user_col: str, pending_col: str) -> tuple[str, str]:
    column = pending_col if ref.is_pending else user_col
    return f"{column} = ?", str(ref.id)


# SQL fragment: a line of expense ``e`` involves user ``?`` (two params)
_INVOLVES_USER = (
    "(EXISTS (SELECT 1 FROM expense_payments p WHERE p.expense_id = e.id AND p.user_id = ?)"
    " OR EXISTS (SELECT 1 FROM expense_splits s WHERE s.expense_id = e.id AND s.user_id = ?))"
)


class SQLiteLedgerStorage(LedgerStorage):
    """
    aiosqlite implementation of every ledger storage interface.

    Usage:
        storage = SQLiteLedgerStorage(":memory:")
        await storage.connect()

        async with storage.transaction():
            await storage.insert_expense(expense)
            await storage.insert_payments(payments)

        await storage.close()
    """

    def __init__(
        self,
        path: Optional[str] = None,
        busy_timeout_ms: Optional[int] = None,
        connect_attempts: Optional[int] = None,
    ):
        settings = get_settings().database
        self._path = path or settings.path
        self._busy_timeout_ms = busy_timeout_ms if busy_timeout_ms is not None else settings.busy_timeout_ms
        self._connect_attempts = connect_attempts or settings.connect_attempts
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        # Marks the task currently holding the transaction so nested
        # transaction() calls join it instead of deadlocking on the lock.
        self._in_transaction: contextvars.ContextVar[bool] = contextvars.ContextVar(
            f"ledger_tx_{id(self)}", default=False
        )

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> str:
        return self._path

    async def _open(self) -> aiosqlite.Connection:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        conn = await aiosqlite.connect(self._path, isolation_level=None)
        try:
            conn.row_factory = aiosqlite.Row
            if self._path != ":memory:":
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            await conn.execute("PRAGMA foreign_keys=ON")
        except aiosqlite.Error:
            await conn.close()
            raise
        return conn

    async def connect(self) -> None:
        """
        Open the database and make sure the schema exists.

        Retries with exponential back-off before giving up.

        Raises:
            StorageConnectionError: if the database cannot be opened
        """
        if self._conn is not None:
            return

        open_with_retry = retry(
            stop=stop_after_attempt(self._connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type((aiosqlite.Error, OSError)),
            reraise=True,
        )(self._open)

        try:
            conn = await open_with_retry()
        except (aiosqlite.Error, OSError) as e:
            raise StorageConnectionError(f"Failed to open ledger database {self._path}: {e}") from e

        try:
            await init_schema(conn)
        except aiosqlite.Error as e:
            await conn.close()
            raise StorageConnectionError(f"Failed to initialize ledger schema: {e}") from e

        self._conn = conn
        logger.info("ledger_storage_connected", path=self._path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("ledger_storage_closed", path=self._path)

    async def __aenter__(self) -> "SQLiteLedgerStorage":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageConnectionError("Not connected to ledger database")
        return self._conn

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction.get():
            yield
            return

        conn = self._require_conn()
        async with self._lock:
            token = self._in_transaction.set(True)
            try:
                await self._raw(conn, "BEGIN IMMEDIATE")
                try:
                    yield
                except BaseException:
                    await self._rollback(conn)
                    raise
                try:
                    await self._raw(conn, "COMMIT")
                except StorageError:
                    await self._rollback(conn)
                    raise
            finally:
                self._in_transaction.reset(token)

    @asynccontextmanager
    async def savepoint(self, name: str) -> AsyncIterator[None]:
        if not self._in_transaction.get():
            raise StorageError("savepoint() requires an open transaction")
        if not name.isidentifier():
            raise StorageError(f"Invalid savepoint name: {name}")

        conn = self._require_conn()
        await self._raw(conn, f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            await self._raw(conn, f"ROLLBACK TO {name}")
            await self._raw(conn, f"RELEASE {name}")
            raise
        await self._raw(conn, f"RELEASE {name}")

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        """Serialize a standalone read with writers; no-op inside a transaction."""
        if self._in_transaction.get():
            yield
            return
        async with self._lock:
            yield

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK")
        except aiosqlite.Error as e:
            logger.error("ledger_rollback_failed", error=str(e))

    async def _raw(self, conn: aiosqlite.Connection, sql: str) -> None:
        try:
            await conn.execute(sql)
        except aiosqlite.Error as e:
            raise StorageError(f"{sql} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Statement helpers (driver errors never leave this class)
    # -------------------------------------------------------------------------

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement inside the current transaction. Returns rowcount."""
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount
        except aiosqlite.IntegrityError as e:
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise DuplicateError(str(e)) from e
            raise StorageError(f"Integrity violation: {e}") from e
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e

    async def _executemany(self, sql: str, rows: list[tuple]) -> None:
        if not rows:
            return
        conn = self._require_conn()
        try:
            await conn.executemany(sql, rows)
        except aiosqlite.IntegrityError as e:
            raise StorageError(f"Integrity violation: {e}") from e
        except aiosqlite.Error as e:
            raise StorageError(str(e)) from e

    async def _write(self, sql: str, params: tuple = ()) -> int:
        async with self.transaction():
            return await self._execute(sql, params)

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        conn = self._require_conn()
        async with self._guard():
            try:
                cursor = await conn.execute(sql, params)
                return list(await cursor.fetchall())
            except aiosqlite.Error as e:
                raise StorageError(str(e)) from e

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        rows = await self._fetchall(sql, params)
        return rows[0] if rows else None

    # -------------------------------------------------------------------------
    # Directory
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        return User(
            id=UUID(row["id"]),
            email=row["email"],
            name=row["name"],
            created_at=_dt(row["created_at"]),
        )

    async def create_user(self, user: User) -> User:
        await self._write(
            "INSERT INTO users (id, email, name, created_at) VALUES (?, ?, ?, ?)",
            (str(user.id), user.email.lower(), user.name, _dt_text(user.created_at)),
        )
        return user

    async def get_user(self, user_id: UUID) -> Optional[User]:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (str(user_id),))
        return self._row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetchone(
            "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
        )
        return self._row_to_user(row) if row else None

    async def create_group(self, group: Group) -> Group:
        await self._write(
            "INSERT INTO groups (id, name, currency_code, created_by, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                str(group.id),
                group.name,
                group.currency_code,
                _id(group.created_by),
                _dt_text(group.created_at),
            ),
        )
        return group

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        row = await self._fetchone("SELECT * FROM groups WHERE id = ?", (str(group_id),))
        if row is None:
            return None
        return Group(
            id=UUID(row["id"]),
            name=row["name"],
            currency_code=row["currency_code"],
            created_by=_uuid(row["created_by"]),
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_member(row: aiosqlite.Row) -> GroupMember:
        return GroupMember(
            group_id=UUID(row["group_id"]),
            user_id=UUID(row["user_id"]),
            role=MemberRole(row["role"]),
            status=MemberStatus(row["status"]),
            joined_at=_dt(row["joined_at"]),
        )

    async def add_member(self, member: GroupMember) -> GroupMember:
        await self._write(
            "INSERT INTO group_members (group_id, user_id, role, status, joined_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT (group_id, user_id) DO UPDATE SET "
            "role = excluded.role, status = excluded.status",
            (
                str(member.group_id),
                str(member.user_id),
                member.role.value,
                member.status.value,
                _dt_text(member.joined_at),
            ),
        )
        return member

    async def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        row = await self._fetchone(
            "SELECT * FROM group_members WHERE group_id = ? AND user_id = ?",
            (str(group_id), str(user_id)),
        )
        return self._row_to_member(row) if row else None

    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        rows = await self._fetchall(
            "SELECT * FROM group_members WHERE group_id = ? ORDER BY joined_at, user_id",
            (str(group_id),),
        )
        return [self._row_to_member(r) for r in rows]

    async def save_friendship(self, friendship: Friendship) -> Friendship:
        first, second = canonical_pair(friendship.user_id, friendship.friend_id)
        await self._write(
            "INSERT INTO friendships (user_id, friend_id, status, created_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT (user_id, friend_id) DO UPDATE SET status = excluded.status",
            (str(first), str(second), friendship.status.value, _dt_text(friendship.created_at)),
        )
        return friendship.model_copy(update={"user_id": first, "friend_id": second})

    async def get_friendship(self, user_id: UUID, friend_id: UUID) -> Optional[Friendship]:
        first, second = canonical_pair(user_id, friend_id)
        row = await self._fetchone(
            "SELECT * FROM friendships WHERE user_id = ? AND friend_id = ?",
            (str(first), str(second)),
        )
        if row is None:
            return None
        return Friendship(
            user_id=UUID(row["user_id"]),
            friend_id=UUID(row["friend_id"]),
            status=FriendshipStatus(row["status"]),
            created_at=_dt(row["created_at"]),
        )

    async def create_category(self, category: Category) -> Category:
        await self._write(
            "INSERT INTO categories (id, group_id, name, created_at) VALUES (?, ?, ?, ?)",
            (str(category.id), str(category.group_id), category.name, _dt_text(category.created_at)),
        )
        return category

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        row = await self._fetchone("SELECT * FROM categories WHERE id = ?", (str(category_id),))
        if row is None:
            return None
        return Category(
            id=UUID(row["id"]),
            group_id=UUID(row["group_id"]),
            name=row["name"],
            created_at=_dt(row["created_at"]),
        )

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_expense(row: aiosqlite.Row) -> Expense:
        return Expense(
            id=UUID(row["id"]),
            group_id=_uuid(row["group_id"]),
            kind=ExpenseKind(row["kind"]),
            title=row["title"],
            notes=row["notes"],
            amount=Decimal(row["amount"]),
            currency_code=row["currency_code"],
            expense_date=_date(row["expense_date"]),
            category_id=_uuid(row["category_id"]),
            tags=json.loads(row["tags_json"] or "[]"),
            created_by=UUID(row["created_by"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            updated_by=_uuid(row["updated_by"]),
        )

    @staticmethod
    def _row_to_payment(row: aiosqlite.Row) -> Payment:
        return Payment(
            id=UUID(row["id"]),
            expense_id=UUID(row["expense_id"]),
            participant=_ref(row["user_id"], row["pending_user_id"]),
            amount=Decimal(row["amount"]),
            method=row["payment_method"],
        )

    @staticmethod
    def _row_to_split(row: aiosqlite.Row) -> Split:
        return Split(
            id=UUID(row["id"]),
            expense_id=UUID(row["expense_id"]),
            participant=_ref(row["user_id"], row["pending_user_id"]),
            amount=Decimal(row["amount_owed"]),
            split_type=SplitType(row["split_type"]),
            share_value=_dec(row["share_value"]),
        )

    async def insert_expense(self, expense: Expense) -> Expense:
        await self._write(
            "INSERT INTO expenses (id, group_id, kind, title, notes, amount, currency_code, "
            "expense_date, category_id, tags_json, created_by, created_at, updated_at, updated_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(expense.id),
                _id(expense.group_id),
                expense.kind.value,
                expense.title,
                expense.notes,
                str(expense.amount),
                expense.currency_code,
                _date_text(expense.expense_date),
                _id(expense.category_id),
                json.dumps(expense.tags),
                str(expense.created_by),
                _dt_text(expense.created_at),
                _dt_text(expense.updated_at),
                _id(expense.updated_by),
            ),
        )
        return expense

    async def update_expense(self, expense: Expense) -> Expense:
        await self._write(
            "UPDATE expenses SET title = ?, notes = ?, amount = ?, currency_code = ?, "
            "expense_date = ?, category_id = ?, tags_json = ?, updated_at = ?, updated_by = ? "
            "WHERE id = ?",
            (
                expense.title,
                expense.notes,
                str(expense.amount),
                expense.currency_code,
                _date_text(expense.expense_date),
                _id(expense.category_id),
                json.dumps(expense.tags),
                _dt_text(expense.updated_at),
                _id(expense.updated_by),
                str(expense.id),
            ),
        )
        return expense

    async def delete_expense(self, expense_id: UUID) -> bool:
        return await self._write("DELETE FROM expenses WHERE id = ?", (str(expense_id),)) > 0

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        row = await self._fetchone("SELECT * FROM expenses WHERE id = ?", (str(expense_id),))
        return self._row_to_expense(row) if row else None

    async def insert_payments(self, payments: list[Payment]) -> None:
        rows = []
        for payment in payments:
            user_id, pending_id = _ref_columns(payment.participant)
            rows.append((
                str(payment.id),
                str(payment.expense_id),
                user_id,
                pending_id,
                str(payment.amount),
                payment.method,
            ))
        async with self.transaction():
            await self._executemany(
                "INSERT INTO expense_payments (id, expense_id, user_id, pending_user_id, "
                "amount, payment_method) VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )

    async def insert_splits(self, splits: list[Split]) -> None:
        rows = []
        for split in splits:
            user_id, pending_id = _ref_columns(split.participant)
            rows.append((
                str(split.id),
                str(split.expense_id),
                user_id,
                pending_id,
                str(split.amount),
                split.split_type.value,
                _dec_text(split.share_value),
            ))
        async with self.transaction():
            await self._executemany(
                "INSERT INTO expense_splits (id, expense_id, user_id, pending_user_id, "
                "amount_owed, split_type, share_value) VALUES (?, ?, ?, ?, ?, ?, ?)",
                rows,
            )

    async def delete_lines(self, expense_id: UUID) -> None:
        async with self.transaction():
            await self._execute("DELETE FROM expense_payments WHERE expense_id = ?", (str(expense_id),))
            await self._execute("DELETE FROM expense_splits WHERE expense_id = ?", (str(expense_id),))

    async def list_payments(self, expense_id: UUID) -> list[Payment]:
        rows = await self._fetchall(
            "SELECT * FROM expense_payments WHERE expense_id = ? ORDER BY rowid",
            (str(expense_id),),
        )
        return [self._row_to_payment(r) for r in rows]

    async def list_splits(self, expense_id: UUID) -> list[Split]:
        rows = await self._fetchall(
            "SELECT * FROM expense_splits WHERE expense_id = ? ORDER BY rowid",
            (str(expense_id),),
        )
        return [self._row_to_split(r) for r in rows]

    async def list_expenses_by_group(self, group_id: UUID) -> list[Expense]:
        rows = await self._fetchall(
            "SELECT * FROM expenses WHERE group_id = ? "
            "ORDER BY expense_date DESC, created_at DESC",
            (str(group_id),),
        )
        return [self._row_to_expense(r) for r in rows]

    async def search_expenses(self, query: ExpenseQuery) -> list[Expense]:
        clauses = ["e.group_id = ?"]
        params: list[Any] = [str(query.group_id)]

        if query.text:
            needle = query.text.lower()
            clauses.append("(instr(lower(e.title), ?) > 0 OR instr(lower(COALESCE(e.notes, '')), ?) > 0)")
            params.extend([needle, needle])
        if query.start_date:
            clauses.append("e.expense_date >= ?")
            params.append(_date_text(query.start_date))
        if query.end_date:
            clauses.append("e.expense_date <= ?")
            params.append(_date_text(query.end_date))
        if query.category_id:
            clauses.append("e.category_id = ?")
            params.append(str(query.category_id))
        if query.created_by:
            clauses.append("e.created_by = ?")
            params.append(str(query.created_by))
        if query.payer is not None:
            condition, value = _ref_clause(query.payer, "p.user_id", "p.pending_user_id")
            clauses.append(
                f"EXISTS (SELECT 1 FROM expense_payments p WHERE p.expense_id = e.id AND {condition})"
            )
            params.append(value)
        if query.ower is not None:
            condition, value = _ref_clause(query.ower, "s.user_id", "s.pending_user_id")
            clauses.append(
                f"EXISTS (SELECT 1 FROM expense_splits s WHERE s.expense_id = e.id AND {condition})"
            )
            params.append(value)

        sql = (
            f"SELECT e.* FROM expenses e WHERE {' AND '.join(clauses)} "
            "ORDER BY e.expense_date DESC, e.created_at DESC"
        )

        # Amount bounds are compared as Decimal in Python, so paging has to
        # follow the amount filter when one is present.
        amount_filtered = query.min_amount is not None or query.max_amount is not None
        if not amount_filtered:
            sql += " LIMIT ? OFFSET ?"
            params.extend([query.limit, query.offset])

        expenses = [self._row_to_expense(r) for r in await self._fetchall(sql, tuple(params))]
        if not amount_filtered:
            return expenses

        if query.min_amount is not None:
            expenses = [e for e in expenses if e.amount >= query.min_amount]
        if query.max_amount is not None:
            expenses = [e for e in expenses if e.amount <= query.max_amount]
        return expenses[query.offset:query.offset + query.limit]

    async def list_group_payments(self, group_id: UUID) -> list[Payment]:
        rows = await self._fetchall(
            "SELECT p.* FROM expense_payments p JOIN expenses e ON e.id = p.expense_id "
            "WHERE e.group_id = ? ORDER BY p.rowid",
            (str(group_id),),
        )
        return [self._row_to_payment(r) for r in rows]

    async def list_group_splits(self, group_id: UUID) -> list[Split]:
        rows = await self._fetchall(
            "SELECT s.* FROM expense_splits s JOIN expenses e ON e.id = s.expense_id "
            "WHERE e.group_id = ? ORDER BY s.rowid",
            (str(group_id),),
        )
        return [self._row_to_split(r) for r in rows]

    async def list_friend_expenses(self, user_id: UUID, friend_id: UUID) -> list[Expense]:
        rows = await self._fetchall(
            f"SELECT e.* FROM expenses e WHERE e.kind = 'friend' "
            f"AND {_INVOLVES_USER} AND {_INVOLVES_USER} "
            "ORDER BY e.expense_date DESC, e.created_at DESC",
            (str(user_id), str(user_id), str(friend_id), str(friend_id)),
        )
        return [self._row_to_expense(r) for r in rows]

    async def list_user_friend_expenses(self, user_id: UUID) -> list[Expense]:
        rows = await self._fetchall(
            f"SELECT e.* FROM expenses e WHERE e.kind = 'friend' AND {_INVOLVES_USER} "
            "ORDER BY e.expense_date DESC, e.created_at DESC",
            (str(user_id), str(user_id)),
        )
        return [self._row_to_expense(r) for r in rows]

    async def list_groups_with_user_lines(self, user_id: UUID) -> list[UUID]:
        rows = await self._fetchall(
            f"SELECT DISTINCT e.group_id FROM expenses e "
            f"WHERE e.group_id IS NOT NULL AND {_INVOLVES_USER} ORDER BY e.group_id",
            (str(user_id), str(user_id)),
        )
        return [UUID(r["group_id"]) for r in rows]

    # -------------------------------------------------------------------------
    # Settlements
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_settlement(row: aiosqlite.Row) -> Settlement:
        return Settlement(
            id=UUID(row["id"]),
            group_id=_uuid(row["group_id"]),
            kind=ExpenseKind(row["kind"]),
            payer=_ref(row["payer_user_id"], row["payer_pending_id"]),
            payee=_ref(row["payee_user_id"], row["payee_pending_id"]),
            amount=Decimal(row["amount"]),
            currency_code=row["currency_code"],
            status=SettlementStatus(row["status"]),
            method=row["payment_method"],
            reference=row["reference"],
            notes=row["notes"],
            completed_at=_dt(row["completed_at"]),
            created_by=UUID(row["created_by"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            updated_by=_uuid(row["updated_by"]),
        )

    async def insert_settlement(self, settlement: Settlement) -> Settlement:
        payer_user, payer_pending = _ref_columns(settlement.payer)
        payee_user, payee_pending = _ref_columns(settlement.payee)
        await self._write(
            "INSERT INTO settlements (id, group_id, kind, payer_user_id, payer_pending_id, "
            "payee_user_id, payee_pending_id, amount, currency_code, status, payment_method, "
            "reference, notes, completed_at, created_by, created_at, updated_at, updated_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(settlement.id),
                _id(settlement.group_id),
                settlement.kind.value,
                payer_user,
                payer_pending,
                payee_user,
                payee_pending,
                str(settlement.amount),
                settlement.currency_code,
                settlement.status.value,
                settlement.method,
                settlement.reference,
                settlement.notes,
                _dt_text(settlement.completed_at),
                str(settlement.created_by),
                _dt_text(settlement.created_at),
                _dt_text(settlement.updated_at),
                _id(settlement.updated_by),
            ),
        )
        return settlement

    async def update_settlement(self, settlement: Settlement) -> Settlement:
        await self._write(
            "UPDATE settlements SET amount = ?, currency_code = ?, status = ?, payment_method = ?, "
            "reference = ?, notes = ?, completed_at = ?, updated_at = ?, updated_by = ? "
            "WHERE id = ?",
            (
                str(settlement.amount),
                settlement.currency_code,
                settlement.status.value,
                settlement.method,
                settlement.reference,
                settlement.notes,
                _dt_text(settlement.completed_at),
                _dt_text(settlement.updated_at),
                _id(settlement.updated_by),
                str(settlement.id),
            ),
        )
        return settlement

    async def delete_settlement(self, settlement_id: UUID) -> bool:
        return await self._write("DELETE FROM settlements WHERE id = ?", (str(settlement_id),)) > 0

    async def get_settlement(self, settlement_id: UUID) -> Optional[Settlement]:
        row = await self._fetchone("SELECT * FROM settlements WHERE id = ?", (str(settlement_id),))
        return self._row_to_settlement(row) if row else None

    async def list_settlements_by_group(
        self,
        group_id: UUID,
        status: Optional[SettlementStatus] = None,
    ) -> list[Settlement]:
        sql = "SELECT * FROM settlements WHERE group_id = ?"
        params: list[Any] = [str(group_id)]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        rows = await self._fetchall(sql + " ORDER BY created_at DESC", tuple(params))
        return [self._row_to_settlement(r) for r in rows]

    async def list_settlements_by_user(self, user_id: UUID) -> list[Settlement]:
        rows = await self._fetchall(
            "SELECT * FROM settlements WHERE payer_user_id = ? OR payee_user_id = ? "
            "ORDER BY created_at DESC",
            (str(user_id), str(user_id)),
        )
        return [self._row_to_settlement(r) for r in rows]

    async def list_friend_settlements(self, user_id: UUID, friend_id: UUID) -> list[Settlement]:
        rows = await self._fetchall(
            "SELECT * FROM settlements WHERE kind = 'friend' AND ("
            "(payer_user_id = ? AND payee_user_id = ?) OR (payer_user_id = ? AND payee_user_id = ?)"
            ") ORDER BY created_at DESC",
            (str(user_id), str(friend_id), str(friend_id), str(user_id)),
        )
        return [self._row_to_settlement(r) for r in rows]

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_pending(row: aiosqlite.Row) -> PendingParticipant:
        return PendingParticipant(
            id=UUID(row["id"]),
            email=row["email"],
            name=row["name"],
            created_at=_dt(row["created_at"]),
        )

    @staticmethod
    def _row_to_invitation(row: aiosqlite.Row) -> Invitation:
        return Invitation(
            id=UUID(row["id"]),
            group_id=UUID(row["group_id"]),
            email=row["email"],
            token=row["token"],
            role=MemberRole(row["role"]),
            status=InvitationStatus(row["status"]),
            invited_by=UUID(row["invited_by"]),
            expires_at=_dt(row["expires_at"]),
            created_at=_dt(row["created_at"]),
            accepted_at=_dt(row["accepted_at"]),
        )

    async def insert_pending_participant(self, pending: PendingParticipant) -> PendingParticipant:
        await self._write(
            "INSERT INTO pending_users (id, email, name, created_at) VALUES (?, ?, ?, ?)",
            (str(pending.id), pending.email, pending.name, _dt_text(pending.created_at)),
        )
        return pending

    async def get_pending_participant(self, pending_id: UUID) -> Optional[PendingParticipant]:
        row = await self._fetchone("SELECT * FROM pending_users WHERE id = ?", (str(pending_id),))
        return self._row_to_pending(row) if row else None

    async def get_pending_participant_by_email(self, email: str) -> Optional[PendingParticipant]:
        row = await self._fetchone(
            "SELECT * FROM pending_users WHERE email = ?", (email.strip().lower(),)
        )
        return self._row_to_pending(row) if row else None

    async def delete_pending_participant(self, pending_id: UUID) -> bool:
        return await self._write("DELETE FROM pending_users WHERE id = ?", (str(pending_id),)) > 0

    async def insert_invitation(self, invitation: Invitation) -> Invitation:
        await self._write(
            "INSERT INTO group_invitations (id, group_id, email, token, role, status, "
            "invited_by, expires_at, created_at, accepted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(invitation.id),
                str(invitation.group_id),
                invitation.email,
                invitation.token,
                invitation.role.value,
                invitation.status.value,
                str(invitation.invited_by),
                _dt_text(invitation.expires_at),
                _dt_text(invitation.created_at),
                _dt_text(invitation.accepted_at),
            ),
        )
        return invitation

    async def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        row = await self._fetchone("SELECT * FROM group_invitations WHERE token = ?", (token,))
        return self._row_to_invitation(row) if row else None

    async def update_invitation_status(
        self,
        invitation_id: UUID,
        status: InvitationStatus,
    ) -> Optional[Invitation]:
        accepted_at = _dt_text(utcnow()) if status == InvitationStatus.ACCEPTED else None
        async with self.transaction():
            await self._execute(
                "UPDATE group_invitations SET status = ?, accepted_at = COALESCE(?, accepted_at) "
                "WHERE id = ?",
                (status.value, accepted_at, str(invitation_id)),
            )
            row = await self._fetchone(
                "SELECT * FROM group_invitations WHERE id = ?", (str(invitation_id),)
            )
        return self._row_to_invitation(row) if row else None

    async def list_pending_invitations(self, email: str) -> list[Invitation]:
        rows = await self._fetchall(
            "SELECT * FROM group_invitations WHERE email = ? AND status = ? ORDER BY created_at DESC",
            (email.strip().lower(), InvitationStatus.PENDING.value),
        )
        return [self._row_to_invitation(r) for r in rows]

    async def rebind_payments(self, pending_id: UUID, user_id: UUID) -> int:
        return await self._write(
            "UPDATE expense_payments SET user_id = ?, pending_user_id = NULL WHERE pending_user_id = ?",
            (str(user_id), str(pending_id)),
        )

    async def rebind_splits(self, pending_id: UUID, user_id: UUID) -> int:
        return await self._write(
            "UPDATE expense_splits SET user_id = ?, pending_user_id = NULL WHERE pending_user_id = ?",
            (str(user_id), str(pending_id)),
        )

    async def rebind_settlement_payers(self, pending_id: UUID, user_id: UUID) -> int:
        return await self._write(
            "UPDATE settlements SET payer_user_id = ?, payer_pending_id = NULL WHERE payer_pending_id = ?",
            (str(user_id), str(pending_id)),
        )

    async def rebind_settlement_payees(self, pending_id: UUID, user_id: UUID) -> int:
        return await self._write(
            "UPDATE settlements SET payee_user_id = ?, payee_pending_id = NULL WHERE payee_pending_id = ?",
            (str(user_id), str(pending_id)),
        )

    # -------------------------------------------------------------------------
    # Recurring templates
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_template(row: aiosqlite.Row) -> RecurringTemplate:
        return RecurringTemplate(
            id=UUID(row["id"]),
            group_id=UUID(row["group_id"]),
            title=row["title"],
            notes=row["notes"],
            amount=Decimal(row["amount"]),
            currency_code=row["currency_code"],
            category_id=_uuid(row["category_id"]),
            repeat_interval=RepeatInterval(row["repeat_interval"]),
            day_of_week=row["day_of_week"],
            day_of_month=row["day_of_month"],
            start_date=_date(row["start_date"]),
            end_date=_date(row["end_date"]),
            next_occurrence_date=_date(row["next_occurrence_date"]),
            is_active=bool(row["is_active"]),
            created_by=UUID(row["created_by"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            updated_by=_uuid(row["updated_by"]),
        )

    async def insert_template(self, template: RecurringTemplate) -> RecurringTemplate:
        await self._write(
            "INSERT INTO recurring_expenses (id, group_id, title, notes, amount, currency_code, "
            "category_id, repeat_interval, day_of_week, day_of_month, start_date, end_date, "
            "next_occurrence_date, is_active, created_by, created_at, updated_at, updated_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(template.id),
                str(template.group_id),
                template.title,
                template.notes,
                str(template.amount),
                template.currency_code,
                _id(template.category_id),
                template.repeat_interval.value,
                template.day_of_week,
                template.day_of_month,
                _date_text(template.start_date),
                _date_text(template.end_date),
                _date_text(template.next_occurrence_date),
                int(template.is_active),
                str(template.created_by),
                _dt_text(template.created_at),
                _dt_text(template.updated_at),
                _id(template.updated_by),
            ),
        )
        return template

    async def update_template(self, template: RecurringTemplate) -> RecurringTemplate:
        await self._write(
            "UPDATE recurring_expenses SET title = ?, notes = ?, amount = ?, currency_code = ?, "
            "category_id = ?, repeat_interval = ?, day_of_week = ?, day_of_month = ?, "
            "start_date = ?, end_date = ?, next_occurrence_date = ?, is_active = ?, "
            "updated_at = ?, updated_by = ? WHERE id = ?",
            (
                template.title,
                template.notes,
                str(template.amount),
                template.currency_code,
                _id(template.category_id),
                template.repeat_interval.value,
                template.day_of_week,
                template.day_of_month,
                _date_text(template.start_date),
                _date_text(template.end_date),
                _date_text(template.next_occurrence_date),
                int(template.is_active),
                _dt_text(template.updated_at),
                _id(template.updated_by),
                str(template.id),
            ),
        )
        return template

    async def delete_template(self, template_id: UUID) -> bool:
        return await self._write(
            "DELETE FROM recurring_expenses WHERE id = ?", (str(template_id),)
        ) > 0

    async def get_template(self, template_id: UUID) -> Optional[RecurringTemplate]:
        row = await self._fetchone(
            "SELECT * FROM recurring_expenses WHERE id = ?", (str(template_id),)
        )
        return self._row_to_template(row) if row else None

    async def insert_template_lines(
        self,
        payments: list[TemplatePayment],
        splits: list[TemplateSplit],
    ) -> None:
        async with self.transaction():
            await self._executemany(
                "INSERT INTO recurring_expense_payments (id, template_id, user_id, amount, "
                "payment_method) VALUES (?, ?, ?, ?, ?)",
                [
                    (str(p.id), str(p.template_id), str(p.user_id), str(p.amount), p.method)
                    for p in payments
                ],
            )
            await self._executemany(
                "INSERT INTO recurring_expense_splits (id, template_id, user_id, amount_owed, "
                "split_type, share_value) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (
                        str(s.id),
                        str(s.template_id),
                        str(s.user_id),
                        str(s.amount),
                        s.split_type.value,
                        _dec_text(s.share_value),
                    )
                    for s in splits
                ],
            )

    async def delete_template_lines(self, template_id: UUID) -> None:
        async with self.transaction():
            await self._execute(
                "DELETE FROM recurring_expense_payments WHERE template_id = ?", (str(template_id),)
            )
            await self._execute(
                "DELETE FROM recurring_expense_splits WHERE template_id = ?", (str(template_id),)
            )

    async def list_template_payments(self, template_id: UUID) -> list[TemplatePayment]:
        rows = await self._fetchall(
            "SELECT * FROM recurring_expense_payments WHERE template_id = ? ORDER BY rowid",
            (str(template_id),),
        )
        return [
            TemplatePayment(
                id=UUID(r["id"]),
                template_id=UUID(r["template_id"]),
                user_id=UUID(r["user_id"]),
                amount=Decimal(r["amount"]),
                method=r["payment_method"],
            )
            for r in rows
        ]

    async def list_template_splits(self, template_id: UUID) -> list[TemplateSplit]:
        rows = await self._fetchall(
            "SELECT * FROM recurring_expense_splits WHERE template_id = ? ORDER BY rowid",
            (str(template_id),),
        )
        return [
            TemplateSplit(
                id=UUID(r["id"]),
                template_id=UUID(r["template_id"]),
                user_id=UUID(r["user_id"]),
                amount=Decimal(r["amount_owed"]),
                split_type=SplitType(r["split_type"]),
                share_value=_dec(r["share_value"]),
            )
            for r in rows
        ]

    async def list_templates_by_group(self, group_id: UUID) -> list[RecurringTemplate]:
        rows = await self._fetchall(
            "SELECT * FROM recurring_expenses WHERE group_id = ? "
            "ORDER BY next_occurrence_date, created_at",
            (str(group_id),),
        )
        return [self._row_to_template(r) for r in rows]

    async def list_due_templates(self, as_of: date) -> list[RecurringTemplate]:
        rows = await self._fetchall(
            "SELECT * FROM recurring_expenses WHERE is_active = 1 AND next_occurrence_date <= ? "
            "ORDER BY next_occurrence_date, created_at",
            (_date_text(as_of),),
        )
        return [self._row_to_template(r) for r in rows]

    async def advance_template(
        self,
        template_id: UUID,
        occurrence_date: date,
        next_occurrence_date: date,
        is_active: bool,
    ) -> bool:
        """Move an active template past ``occurrence_date``. False if it already moved."""
        updated = await self._write(
            "UPDATE recurring_expenses SET next_occurrence_date = ?, is_active = ?, updated_at = ? "
            "WHERE id = ? AND next_occurrence_date = ? AND is_active = 1",
            (
                _date_text(next_occurrence_date),
                int(is_active),
                _dt_text(utcnow()),
                str(template_id),
                _date_text(occurrence_date),
            ),
        )
        return updated > 0

    # -------------------------------------------------------------------------
    # Activity
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> ActivityEvent:
        return ActivityEvent(
            event_id=UUID(row["event_id"]),
            timestamp=_dt(row["created_at"]),
            group_id=_uuid(row["group_id"]),
            actor_id=_uuid(row["actor_id"]),
            action=ActivityAction(row["action"]),
            severity=ActivitySeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=_uuid(row["entity_id"]),
            description=row["description"],
            metadata=json.loads(row["metadata_json"] or "{}"),
        )

    async def append_event(self, event: ActivityEvent) -> bool:
        await self._write(
            "INSERT INTO group_activities (event_id, group_id, actor_id, action, severity, "
            "entity_type, entity_id, description, metadata_json, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(event.event_id),
                _id(event.group_id),
                _id(event.actor_id),
                event.action.value,
                event.severity.value,
                event.entity_type,
                _id(event.entity_id),
                event.description,
                event.metadata_json(),
                _dt_text(event.timestamp),
            ),
        )
        return True

    async def list_group_events(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ActivityEvent]:
        rows = await self._fetchall(
            "SELECT * FROM group_activities WHERE group_id = ? ORDER BY seq DESC LIMIT ? OFFSET ?",
            (str(group_id), limit, offset),
        )
        return [self._row_to_event(r) for r in rows]

    async def list_entity_events(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ActivityEvent]:
        rows = await self._fetchall(
            "SELECT * FROM group_activities WHERE entity_type = ? AND entity_id = ? ORDER BY seq",
            (entity_type, str(entity_id)),
        )
        return [self._row_to_event(r) for r in rows]
