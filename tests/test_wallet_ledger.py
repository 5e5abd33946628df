"""
Unit tests for WalletLedger.

Covers lazy wallet creation, balance updates with their transaction rows,
the non-negative guard, and the optimistic-lock retry when another writer
changes the wallet between our read and our write, and concurrent
writers on separate sessions.
"""
import asyncio

import pytest
from sqlalchemy import event, select, update, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledger.core.exceptions import (
    InsufficientBalanceError,
    LedgerConflictError,
    UserNotFoundError,
    ValidationException,
    ErrorCode,
)
from ledger.db.database import Base
from ledger.db.models.transaction import (
    Transaction,
    TransactionType,
    LedgerAccount,
    TransactionStatus,
)
from ledger.db.models.user import User, UserRole
from ledger.db.models.wallet import Wallet
from ledger.domain.services.wallet_ledger import WalletLedger


async def _transaction_count(db_session, user_id: int) -> int:
    result = await db_session.execute(
        select(func.count(Transaction.id)).where(Transaction.user_id == user_id)
    )
    return result.scalar_one()


@pytest.mark.unit
async def test_get_or_create_wallet_creates_empty_wallet(user_factory, db_session):
    user = await user_factory(role=UserRole.BUSINESS_OWNER)
    ledger = WalletLedger(db_session)

    wallet = await ledger.get_or_create_wallet(user.id)

    assert wallet.user_id == user.id
    assert wallet.balance == 0
    assert wallet.cash_owed == 0
    assert wallet.version == 1


@pytest.mark.unit
async def test_get_or_create_wallet_is_idempotent(user_factory, db_session):
    user = await user_factory()
    ledger = WalletLedger(db_session)

    first = await ledger.get_or_create_wallet(user.id)
    second = await ledger.get_or_create_wallet(user.id)

    assert first.id == second.id
    result = await db_session.execute(select(func.count(Wallet.id)))
    assert result.scalar_one() == 1


@pytest.mark.unit
async def test_get_or_create_wallet_unknown_user(db_session):
    with pytest.raises(UserNotFoundError):
        await WalletLedger(db_session).get_or_create_wallet(999)


@pytest.mark.unit
async def test_credit_records_transaction(user_factory, db_session):
    user = await user_factory(role=UserRole.BUSINESS_OWNER)
    ledger = WalletLedger(db_session)

    entry = await ledger.update_balance(
        user.id, 8500, TransactionType.ORDER_INCOME, order_id=None, description="Income"
    )

    assert entry.amount == 8500
    assert entry.balance_before == 0
    assert entry.balance_after == 8500
    assert entry.account == LedgerAccount.BALANCE
    assert entry.status == TransactionStatus.COMPLETED
    wallet = await ledger.get_wallet(user.id)
    assert wallet.balance == 8500
    assert wallet.total_earned == 8500


@pytest.mark.unit
async def test_withdrawal_tracks_total_withdrawn(user_factory, db_session):
    user = await user_factory(role=UserRole.DELIVERY_DRIVER)
    ledger = WalletLedger(db_session)
    await ledger.update_balance(user.id, 5000, TransactionType.DELIVERY_PAYMENT)

    entry = await ledger.update_balance(user.id, -2000, TransactionType.WITHDRAWAL)

    assert entry.balance_before == 5000
    assert entry.balance_after == 3000
    wallet = await ledger.get_wallet(user.id)
    assert wallet.total_withdrawn == 2000
    assert wallet.total_earned == 5000


@pytest.mark.unit
async def test_debit_beyond_balance_has_no_side_effects(user_factory, db_session):
    user = await user_factory()
    user_id = user.id
    ledger = WalletLedger(db_session)
    await ledger.update_balance(user_id, 1000, TransactionType.MANUAL_CREDIT)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger.update_balance(user_id, -1500, TransactionType.MANUAL_DEBIT)

    assert exc_info.value.error_code == ErrorCode.INSUFFICIENT_BALANCE
    assert exc_info.value.details["current_balance"] == 1000
    assert exc_info.value.details["requested_amount"] == 1500
    assert await ledger.get_balance(user_id) == 1000
    assert await _transaction_count(db_session, user_id) == 1


@pytest.mark.unit
@pytest.mark.parametrize("delta", [0, 10.5, True, "100"])
async def test_invalid_delta_rejected(user_factory, db_session, delta):
    user = await user_factory()

    with pytest.raises(ValidationException):
        await WalletLedger(db_session).update_balance(user.id, delta, TransactionType.MANUAL_CREDIT)


@pytest.mark.unit
async def test_cash_entry_types_not_allowed_on_balance(user_factory, db_session):
    user = await user_factory()

    with pytest.raises(ValidationException):
        await WalletLedger(db_session).update_balance(user.id, 100, TransactionType.CASH_DEBT)


@pytest.mark.unit
async def test_unknown_user_rejected(db_session):
    with pytest.raises(UserNotFoundError):
        await WalletLedger(db_session).update_balance(4242, 100, TransactionType.MANUAL_CREDIT)


@pytest.mark.unit
async def test_sequence_of_updates_sums_exactly(user_factory, db_session):
    user = await user_factory()
    ledger = WalletLedger(db_session)
    deltas = [1000, -250, 3333, -1, 77, -4000, 12]

    for delta in deltas:
        txn_type = TransactionType.MANUAL_CREDIT if delta > 0 else TransactionType.MANUAL_DEBIT
        await ledger.update_balance(user.id, delta, txn_type)

    assert await ledger.get_balance(user.id) == sum(deltas)
    history = await ledger.get_transactions(user.id, limit=50)
    assert len(history) == len(deltas)
    # newest first, and every row chains onto the previous one
    chronological = list(reversed(history))
    for previous, current in zip(chronological, chronological[1:]):
        assert current.balance_before == previous.balance_after
    assert chronological[-1].balance_after == sum(deltas)


@pytest.mark.unit
async def test_concurrent_write_is_retried_not_lost(user_factory, db_session):
    """
    Another writer bumps the wallet right after we read it. Our write must
    fail the version check and retry from the fresh row.
    """
    user = await user_factory()
    user_id = user.id
    ledger = WalletLedger(db_session)
    await ledger.update_balance(user_id, 1000, TransactionType.MANUAL_CREDIT)

    original_lock = ledger._lock_wallet
    calls = []

    async def racing_lock(uid):
        wallet = await original_lock(uid)
        calls.append(uid)
        if len(calls) == 1:
            await db_session.execute(
                update(Wallet)
                .where(Wallet.user_id == uid)
                .values(balance=Wallet.balance + 500, version=Wallet.version + 1)
                .execution_options(synchronize_session=False)
            )
        return wallet

    ledger._lock_wallet = racing_lock

    entry = await ledger.update_balance(user_id, 300, TransactionType.MANUAL_CREDIT)

    assert len(calls) == 2
    assert entry.balance_before == 1500
    assert entry.balance_after == 1800
    assert await ledger.get_balance(user_id) == 1800
    assert await _transaction_count(db_session, user_id) == 2


CONCURRENT_WRITERS = 10


@pytest.fixture
async def file_engine(tmp_path):
    """
    A file-backed database so each session gets its own connection. BEGIN
    IMMEDIATE takes the write lock on the first statement, the way
    SELECT ... FOR UPDATE holds the wallet row on PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.mark.unit
async def test_concurrent_credits_from_separate_sessions_are_all_kept(file_engine):
    sessions = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    async with sessions() as setup:
        driver = User(
            name="Busy Driver", role=UserRole.DELIVERY_DRIVER, phone_number="+5215599990001"
        )
        setup.add(driver)
        await setup.commit()
        driver_id = driver.id
        await WalletLedger(setup).get_or_create_wallet(driver_id)

    async def credit_one_centavo():
        async with sessions() as session:
            await WalletLedger(session).update_balance(
                driver_id, 1, TransactionType.MANUAL_CREDIT
            )

    await asyncio.gather(*(credit_one_centavo() for _ in range(CONCURRENT_WRITERS)))

    async with sessions() as check:
        balance = (await check.execute(
            select(Wallet.balance).where(Wallet.user_id == driver_id)
        )).scalar_one()
        chain = (await check.execute(
            select(Transaction.balance_before, Transaction.balance_after)
            .where(Transaction.user_id == driver_id)
            .order_by(Transaction.id)
        )).all()

    assert balance == CONCURRENT_WRITERS
    assert [tuple(row) for row in chain] == [
        (n, n + 1) for n in range(CONCURRENT_WRITERS)
    ]


@pytest.mark.unit
async def test_gives_up_after_max_retries(user_factory, db_session):
    user = await user_factory()
    user_id = user.id
    ledger = WalletLedger(db_session, max_retries=2)
    await ledger.update_balance(user_id, 1000, TransactionType.MANUAL_CREDIT)

    original_lock = ledger._lock_wallet

    async def always_racing_lock(uid):
        wallet = await original_lock(uid)
        await db_session.execute(
            update(Wallet)
            .where(Wallet.user_id == uid)
            .values(version=Wallet.version + 1)
            .execution_options(synchronize_session=False)
        )
        return wallet

    ledger._lock_wallet = always_racing_lock

    with pytest.raises(LedgerConflictError) as exc_info:
        await ledger.update_balance(user_id, 300, TransactionType.MANUAL_CREDIT)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["attempts"] == 2
    assert await _transaction_count(db_session, user_id) == 1


@pytest.mark.unit
async def test_adjust_cash_owed_uses_cash_account(user_factory, db_session):
    driver = await user_factory(role=UserRole.DELIVERY_DRIVER)
    ledger = WalletLedger(db_session)

    entry = await ledger.adjust_cash_owed(driver.id, 9775, TransactionType.CASH_DEBT, order_id=None)

    assert entry.account == LedgerAccount.CASH_OWED
    wallet = await ledger.get_wallet(driver.id)
    assert wallet.cash_owed == 9775
    assert wallet.balance == 0
    assert wallet.total_earned == 0


@pytest.mark.unit
async def test_cash_owed_cannot_go_negative(user_factory, db_session):
    driver = await user_factory(role=UserRole.DELIVERY_DRIVER)
    ledger = WalletLedger(db_session)
    await ledger.adjust_cash_owed(driver.id, 100, TransactionType.CASH_DEBT)

    with pytest.raises(ValidationException):
        await ledger.adjust_cash_owed(driver.id, -200, TransactionType.CASH_SETTLEMENT)


@pytest.mark.unit
async def test_get_transactions_paginates(user_factory, db_session):
    user = await user_factory()
    ledger = WalletLedger(db_session)
    for amount in (100, 200, 300):
        await ledger.update_balance(user.id, amount, TransactionType.MANUAL_CREDIT)

    page = await ledger.get_transactions(user.id, limit=2, offset=1)

    assert [t.amount for t in page] == [200, 100]
