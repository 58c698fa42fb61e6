"""
SQLite schema for the ledger.

Amounts are TEXT holding the exact decimal string; they are summed in
Python, never by SQLite. Ledger line rows carry a CHECK that exactly one of
user_id / pending_user_id is set.
"""

import aiosqlite


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id          TEXT PRIMARY KEY,
        email       TEXT NOT NULL UNIQUE,
        name        TEXT NOT NULL,
        created_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groups (
        id             TEXT PRIMARY KEY,
        name           TEXT NOT NULL,
        currency_code  TEXT NOT NULL,
        created_by     TEXT,
        created_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_members (
        group_id   TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        user_id    TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        role       TEXT NOT NULL,
        status     TEXT NOT NULL,
        joined_at  TEXT NOT NULL,
        PRIMARY KEY (group_id, user_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS friendships (
        user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        friend_id   TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        status      TEXT NOT NULL,
        created_at  TEXT NOT NULL,
        PRIMARY KEY (user_id, friend_id),
        CHECK (user_id < friend_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        id          TEXT PRIMARY KEY,
        group_id    TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        name        TEXT NOT NULL,
        created_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending_users (
        id          TEXT PRIMARY KEY,
        email       TEXT NOT NULL UNIQUE,
        name        TEXT,
        created_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_invitations (
        id           TEXT PRIMARY KEY,
        group_id     TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        email        TEXT NOT NULL,
        token        TEXT NOT NULL UNIQUE,
        role         TEXT NOT NULL,
        status       TEXT NOT NULL,
        invited_by   TEXT NOT NULL,
        expires_at   TEXT NOT NULL,
        created_at   TEXT NOT NULL,
        accepted_at  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenses (
        id             TEXT PRIMARY KEY,
        group_id       TEXT REFERENCES groups(id) ON DELETE CASCADE,
        kind           TEXT NOT NULL,
        title          TEXT NOT NULL,
        notes          TEXT,
        amount         TEXT NOT NULL,
        currency_code  TEXT NOT NULL,
        expense_date   TEXT NOT NULL,
        category_id    TEXT REFERENCES categories(id) ON DELETE SET NULL,
        tags_json      TEXT NOT NULL DEFAULT '[]',
        created_by     TEXT NOT NULL,
        created_at     TEXT NOT NULL,
        updated_at     TEXT NOT NULL,
        updated_by     TEXT,
        CHECK ((kind = 'group') = (group_id IS NOT NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expense_payments (
        id               TEXT PRIMARY KEY,
        expense_id       TEXT NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        user_id          TEXT REFERENCES users(id),
        pending_user_id  TEXT REFERENCES pending_users(id),
        amount           TEXT NOT NULL,
        payment_method   TEXT,
        CHECK ((user_id IS NULL) <> (pending_user_id IS NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expense_splits (
        id               TEXT PRIMARY KEY,
        expense_id       TEXT NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
        user_id          TEXT REFERENCES users(id),
        pending_user_id  TEXT REFERENCES pending_users(id),
        amount_owed      TEXT NOT NULL,
        split_type       TEXT NOT NULL,
        share_value      TEXT,
        CHECK ((user_id IS NULL) <> (pending_user_id IS NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS settlements (
        id                TEXT PRIMARY KEY,
        group_id          TEXT REFERENCES groups(id) ON DELETE CASCADE,
        kind              TEXT NOT NULL,
        payer_user_id     TEXT REFERENCES users(id),
        payer_pending_id  TEXT REFERENCES pending_users(id),
        payee_user_id     TEXT REFERENCES users(id),
        payee_pending_id  TEXT REFERENCES pending_users(id),
        amount            TEXT NOT NULL,
        currency_code     TEXT NOT NULL,
        status            TEXT NOT NULL,
        payment_method    TEXT,
        reference         TEXT,
        notes             TEXT,
        completed_at      TEXT,
        created_by        TEXT NOT NULL,
        created_at        TEXT NOT NULL,
        updated_at        TEXT NOT NULL,
        updated_by        TEXT,
        CHECK ((payer_user_id IS NULL) <> (payer_pending_id IS NULL)),
        CHECK ((payee_user_id IS NULL) <> (payee_pending_id IS NULL))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_expenses (
        id                    TEXT PRIMARY KEY,
        group_id              TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
        title                 TEXT NOT NULL,
        notes                 TEXT,
        amount                TEXT NOT NULL,
        currency_code         TEXT NOT NULL,
        category_id           TEXT REFERENCES categories(id) ON DELETE SET NULL,
        repeat_interval       TEXT NOT NULL,
        day_of_week           INTEGER,
        day_of_month          INTEGER,
        start_date            TEXT NOT NULL,
        end_date              TEXT,
        next_occurrence_date  TEXT NOT NULL,
        is_active             INTEGER NOT NULL DEFAULT 1,
        created_by            TEXT NOT NULL,
        created_at            TEXT NOT NULL,
        updated_at            TEXT NOT NULL,
        updated_by            TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_expense_payments (
        id              TEXT PRIMARY KEY,
        template_id     TEXT NOT NULL REFERENCES recurring_expenses(id) ON DELETE CASCADE,
        user_id         TEXT NOT NULL REFERENCES users(id),
        amount          TEXT NOT NULL,
        payment_method  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_expense_splits (
        id           TEXT PRIMARY KEY,
        template_id  TEXT NOT NULL REFERENCES recurring_expenses(id) ON DELETE CASCADE,
        user_id      TEXT NOT NULL REFERENCES users(id),
        amount_owed  TEXT NOT NULL,
        split_type   TEXT NOT NULL,
        share_value  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_activities (
        seq            INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id       TEXT NOT NULL UNIQUE,
        group_id       TEXT,
        actor_id       TEXT,
        action         TEXT NOT NULL,
        severity       TEXT NOT NULL,
        entity_type    TEXT NOT NULL,
        entity_id      TEXT,
        description    TEXT NOT NULL,
        metadata_json  TEXT NOT NULL DEFAULT '{}',
        created_at     TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_expenses_group_date ON expenses (group_id, expense_date)",
    "CREATE INDEX IF NOT EXISTS idx_payments_expense ON expense_payments (expense_id)",
    "CREATE INDEX IF NOT EXISTS idx_payments_pending ON expense_payments (pending_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_splits_expense ON expense_splits (expense_id)",
    "CREATE INDEX IF NOT EXISTS idx_splits_pending ON expense_splits (pending_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_settlements_group ON settlements (group_id)",
    "CREATE INDEX IF NOT EXISTS idx_invitations_email ON group_invitations (email, status)",
    "CREATE INDEX IF NOT EXISTS idx_recurring_due ON recurring_expenses (is_active, next_occurrence_date)",
    "CREATE INDEX IF NOT EXISTS idx_activities_group ON group_activities (group_id, seq)",
    "CREATE INDEX IF NOT EXISTS idx_activities_entity ON group_activities (entity_type, entity_id)",
]


async def init_schema(conn: aiosqlite.Connection) -> None:
    """Create every table and index that does not exist yet."""
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(statement)
