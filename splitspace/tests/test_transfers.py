"""
Transfer tests.

Idempotency, limit boundaries, PIN gating, atomicity and concurrent
double-spend protection.
"""

import asyncio
from datetime import datetime
import pytest
from decimal import Decimal
from sqlalchemy import func, select

from splitspace.app.core.exceptions import (
    AuthFailedError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    LedgerValidationError,
    LimitExceededError,
)
from splitspace.app.domain.transfers.transfer_service import TransferService
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.enums import VerificationTier
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryStatus
from splitspace.app.services import ledger
from splitspace.app.services.limits import LIMIT_DAILY, LIMIT_MIN, LIMIT_PER_TRANSACTION, LimitChecker


async def _balance(db, user_id):
    return await AccountService.get_balance(db, user_id)


@pytest.mark.asyncio
async def test_transfer_moves_funds(db_session, make_account):
    await make_account(1, balance="1000.00")
    await make_account(2)

    result = await TransferService.transfer(db_session, 1, 2, "250.50", description="rent", pin="1234")

    assert result.new_balance == Decimal("749.50")
    assert result.reference.startswith("TXN")
    assert await _balance(db_session, 1) == Decimal("749.50")
    assert await _balance(db_session, 2) == Decimal("250.50")

    entry = await db_session.get(LedgerEntry, result.transaction_id)
    assert entry.status == LedgerEntryStatus.COMPLETED
    assert entry.from_balance_after == Decimal("749.50")
    assert entry.to_balance_after == Decimal("250.50")


@pytest.mark.asyncio
async def test_same_idempotency_key_applies_once(db_session, make_account):
    await make_account(1, balance="1000.00")
    await make_account(2)

    first = await TransferService.transfer(db_session, 1, 2, "100.00", pin="1234", idempotency_key="abc")
    replay = await TransferService.transfer(db_session, 1, 2, "100.00", pin="1234", idempotency_key="abc")

    assert replay.replayed
    assert replay.transaction_id == first.transaction_id
    assert replay.new_balance == first.new_balance
    assert await _balance(db_session, 1) == Decimal("900.00")
    assert await _balance(db_session, 2) == Decimal("100.00")


@pytest.mark.asyncio
async def test_idempotency_keys_are_scoped_per_sender(db_session, make_account):
    await make_account(1, balance="500.00")
    await make_account(2, balance="500.00")

    await TransferService.transfer(db_session, 1, 2, "50.00", pin="1234", idempotency_key="same")
    other = await TransferService.transfer(db_session, 2, 1, "50.00", pin="1234", idempotency_key="same")

    assert not other.replayed
    assert await _balance(db_session, 1) == Decimal("500.00")


@pytest.mark.asyncio
async def test_rejects_self_transfer_and_bad_amounts(db_session, make_account):
    await make_account(1, balance="100.00")
    await make_account(2)

    with pytest.raises(LedgerValidationError):
        await TransferService.transfer(db_session, 1, 1, "10.00", pin="1234")
    with pytest.raises(LedgerValidationError):
        await TransferService.transfer(db_session, 1, 2, "-10.00", pin="1234")
    with pytest.raises(LedgerValidationError):
        await TransferService.transfer(db_session, 1, 2, "10.005", pin="1234")


@pytest.mark.asyncio
async def test_wrong_pin_moves_nothing(db_session, make_account):
    await make_account(1, balance="100.00")
    await make_account(2)

    with pytest.raises(AuthFailedError) as exc_info:
        await TransferService.transfer(db_session, 1, 2, "10.00", pin="9999")

    assert exc_info.value.details["attempts_remaining"] == 4
    assert await _balance(db_session, 1) == Decimal("100.00")
    count = await db_session.execute(select(func.count(LedgerEntry.id)))
    assert count.scalar() == 1  # seed top-up only


@pytest.mark.asyncio
async def test_per_transaction_limit_is_inclusive(db_session, make_account):
    await make_account(1, balance="5000.00")
    await make_account(2)
    await LimitChecker.upsert_limits(
        db_session, VerificationTier.DEFAULT,
        daily_limit=Decimal("5000.00"),
        per_transaction_limit=Decimal("1000.00"),
        min_transaction=Decimal("100.00"),
    )

    await TransferService.transfer(db_session, 1, 2, "1000.00", pin="1234")

    with pytest.raises(LimitExceededError) as exc_info:
        await TransferService.transfer(db_session, 1, 2, "1000.01", pin="1234")
    assert exc_info.value.details["limit"] == LIMIT_PER_TRANSACTION

    with pytest.raises(LimitExceededError) as exc_info:
        await TransferService.transfer(db_session, 1, 2, "99.99", pin="1234")
    assert exc_info.value.details["limit"] == LIMIT_MIN

    assert await _balance(db_session, 1) == Decimal("4000.00")


@pytest.mark.asyncio
async def test_daily_limit_counts_completed_outgoing(db_session, make_account):
    await make_account(1, balance="5000.00")
    await make_account(2)
    await LimitChecker.upsert_limits(
        db_session, VerificationTier.DEFAULT,
        daily_limit=Decimal("1500.00"),
        per_transaction_limit=Decimal("1000.00"),
        min_transaction=Decimal("1.00"),
    )

    await TransferService.transfer(db_session, 1, 2, "1000.00", pin="1234")
    await TransferService.transfer(db_session, 1, 2, "500.00", pin="1234")  # exactly at the cap

    with pytest.raises(LimitExceededError) as exc_info:
        await TransferService.transfer(db_session, 1, 2, "1.00", pin="1234")
    assert exc_info.value.details["limit"] == LIMIT_DAILY
    assert exc_info.value.details["remaining"] == "0.00"

    # Incoming money does not use the recipient's allowance
    await TransferService.transfer(db_session, 2, 1, "1000.00", pin="1234")


@pytest.mark.asyncio
async def test_verified_tier_gets_its_own_limits(db_session, make_account):
    await make_account(1, balance="5000.00")
    await make_account(2)
    await LimitChecker.upsert_limits(
        db_session, VerificationTier.DEFAULT,
        daily_limit=Decimal("1000.00"), per_transaction_limit=Decimal("500.00"), min_transaction=Decimal("1.00"),
    )
    await LimitChecker.upsert_limits(
        db_session, VerificationTier.VERIFIED,
        daily_limit=Decimal("10000.00"), per_transaction_limit=Decimal("3000.00"), min_transaction=Decimal("1.00"),
    )

    with pytest.raises(LimitExceededError):
        await TransferService.transfer(db_session, 1, 2, "2000.00", pin="1234")

    await AccountService.set_tier(db_session, 1, VerificationTier.VERIFIED, admin_id=99)
    await TransferService.transfer(db_session, 1, 2, "2000.00", pin="1234")
    assert await _balance(db_session, 2) == Decimal("2000.00")


@pytest.mark.asyncio
async def test_limits_must_be_ordered(db_session):
    with pytest.raises(LedgerValidationError):
        await LimitChecker.upsert_limits(
            db_session, VerificationTier.DEFAULT,
            daily_limit=Decimal("100.00"), per_transaction_limit=Decimal("500.00"), min_transaction=Decimal("1.00"),
        )


@pytest.mark.asyncio
async def test_deactivated_recipient_is_rejected(db_session, make_account):
    await make_account(1, balance="100.00")
    await make_account(2)
    await AccountService.deactivate_wallet(db_session, 2)

    with pytest.raises(LedgerValidationError):
        await TransferService.transfer(db_session, 1, 2, "10.00", pin="1234")
    assert await _balance(db_session, 1) == Decimal("100.00")


@pytest.mark.asyncio
async def test_concurrent_transfers_cannot_overdraw(session_factory, db_session, make_account):
    """Two simultaneous 70.00 debits against 100.00: exactly one wins."""
    await make_account(1, balance="100.00")
    await make_account(2)
    await make_account(3)

    async def send(to_user_id):
        async with session_factory() as session:
            return await TransferService.transfer(session, 1, to_user_id, "70.00", pin="1234")

    results = await asyncio.gather(send(2), send(3), return_exceptions=True)

    successes = [r for r in results if isinstance(r, ledger.EntryResult)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], (InsufficientFundsError, ConcurrencyConflictError))

    total = sum([await _balance(db_session, uid) for uid in (1, 2, 3)], Decimal("0.00"))
    assert await _balance(db_session, 1) == Decimal("30.00")
    assert total == Decimal("100.00")


@pytest.mark.asyncio
async def test_concurrent_replays_apply_once(session_factory, db_session, make_account):
    await make_account(1, balance="500.00")
    await make_account(2)

    async def send():
        async with session_factory() as session:
            return await TransferService.transfer(session, 1, 2, "100.00", pin="1234", idempotency_key="dup")

    first, second = await asyncio.gather(send(), send())

    assert first.transaction_id == second.transaction_id
    assert sorted([first.replayed, second.replayed]) == [False, True]
    assert await _balance(db_session, 1) == Decimal("400.00")


@pytest.mark.asyncio
async def test_opposite_transfers_do_not_deadlock(session_factory, db_session, make_account):
    await make_account(1, balance="500.00")
    await make_account(2, balance="500.00")

    async def send(from_user_id, to_user_id, amount):
        async with session_factory() as session:
            return await TransferService.transfer(session, from_user_id, to_user_id, amount, pin="1234")

    results = await asyncio.wait_for(
        asyncio.gather(
            *[send(1, 2, "30.00") for _ in range(5)],
            *[send(2, 1, "20.00") for _ in range(5)],
            return_exceptions=True,
        ),
        timeout=10,
    )

    assert all(isinstance(r, ledger.EntryResult) for r in results)
    assert await _balance(db_session, 1) == Decimal("450.00")
    assert await _balance(db_session, 2) == Decimal("550.00")


@pytest.mark.asyncio
async def test_daily_window_follows_operation_time(db_session, make_account):
    """The allowance resets at local midnight (UTC+1), measured against the transfer's own time."""
    await make_account(1, balance="5000.00")
    await make_account(2)
    await LimitChecker.upsert_limits(
        db_session, VerificationTier.DEFAULT,
        daily_limit=Decimal("1500.00"),
        per_transaction_limit=Decimal("1500.00"),
        min_transaction=Decimal("1.00"),
    )
    late_evening = datetime(2026, 3, 2, 22, 0)     # 23:00 local
    after_midnight = datetime(2026, 3, 2, 23, 30)  # 00:30 local, next day

    first = await TransferService.transfer(db_session, 1, 2, "1500.00", pin="1234", now=late_evening)
    with pytest.raises(LimitExceededError):
        await TransferService.transfer(db_session, 1, 2, "1.00", pin="1234", now=late_evening)

    await TransferService.transfer(db_session, 1, 2, "1500.00", pin="1234", now=after_midnight)

    entry = await db_session.get(LedgerEntry, first.transaction_id)
    assert entry.created_at == entry.completed_at == late_evening
