"""
Main Orchestrator for Split Ledger

Ties the components together:
1. Storage (SQLite through aiosqlite)
2. Activity logger writing into the same database
3. Ledger services: group expenses, friend expenses, settlements
4. Identity resolution, balances, recurring templates and their job

DESIGN DECISION: Every service shares ONE storage object.
Transactions are tracked per task on that object, so a service calling
another service inside its own transaction (recurring generation calling
the expense service) joins the outer transaction instead of opening a
second one.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from src.audit import ActivityLogger, configure_logging
from src.balances import BalanceService
from src.config import Settings, get_settings
from src.identity import AccountGateway, InvitationService
from src.ledger import (
    ExpenseService,
    FriendExpenseService,
    FriendSettlementService,
    SettlementService,
)
from src.recurring import RecurringExpenseJob, RecurringExpenseService
from src.services.storage import LedgerStorage, SQLiteLedgerStorage
from src.validation import LedgerValidator


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a caller (HTTP layer, CLI, worker) needs."""

    settings: Settings
    storage: LedgerStorage
    activity: ActivityLogger
    expenses: ExpenseService
    friend_expenses: FriendExpenseService
    settlements: SettlementService
    friend_settlements: FriendSettlementService
    invitations: InvitationService
    balances: BalanceService
    recurring: RecurringExpenseService
    recurring_job: RecurringExpenseJob

    async def connect(self) -> None:
        await self.storage.connect()

    async def close(self) -> None:
        await self.recurring_job.stop()
        await self.storage.close()


def create_app_components(
    settings: Optional[Settings] = None,
    storage: Optional[LedgerStorage] = None,
    accounts: Optional[AccountGateway] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Defaults to the cached environment settings.
        storage: Defaults to SQLite at the configured path. Not connected
                 yet; call ``connect()`` on the result.
        accounts: Login/registration backend for joining without a session.

    Returns:
        AppComponents with every service wired to the same storage
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level, settings.app.log_json)

    if storage is None:
        db = settings.database
        storage = SQLiteLedgerStorage(
            path=db.path,
            busy_timeout_ms=db.busy_timeout_ms,
            connect_attempts=db.connect_attempts,
        )

    ledger_settings = settings.ledger
    activity = ActivityLogger(storage, storage)
    validator = LedgerValidator(storage, storage)

    expenses = ExpenseService(storage, activity, validator, ledger_settings)
    recurring = RecurringExpenseService(storage, expenses, activity, validator)

    components = AppComponents(
        settings=settings,
        storage=storage,
        activity=activity,
        expenses=expenses,
        friend_expenses=FriendExpenseService(storage, activity, validator, ledger_settings),
        settlements=SettlementService(storage, activity, ledger_settings),
        friend_settlements=FriendSettlementService(storage, ledger_settings),
        invitations=InvitationService(storage, activity, accounts, ledger_settings),
        balances=BalanceService(storage, ledger_settings),
        recurring=recurring,
        recurring_job=RecurringExpenseJob(recurring, settings.scheduler),
    )
    logger.info("app_components_created", environment=settings.app.app_environment)
    return components
