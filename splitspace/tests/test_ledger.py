"""
Ledger store and account tests.

Balance primitives, entry immutability, top-up idempotency and wallet
deactivation.
"""

import pytest
from decimal import Decimal
from sqlalchemy import select

from splitspace.app.core.exceptions import (
    InsufficientFundsError,
    InternalLedgerError,
    LedgerValidationError,
)
from splitspace.app.core.money import parse_amount
from splitspace.app.core.transactions import atomic
from splitspace.app.domain.transfers.transfer_service import TransferService
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.activity_log import ActivityLog
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryStatus, LedgerEntryType
from splitspace.app.models.wallet import Wallet
from splitspace.app.services import ledger


@pytest.mark.parametrize("raw", ["0", "-5", "10.001", "abc", "NaN"])
def test_parse_amount_rejects_bad_input(raw):
    with pytest.raises(LedgerValidationError):
        parse_amount(raw)


def test_parse_amount_quantizes():
    assert parse_amount("10.5") == Decimal("10.50")


def test_apply_entry_refuses_overdraft():
    wallet = Wallet(user_id=1, balance=Decimal("50.00"), version=0)
    with pytest.raises(InsufficientFundsError):
        ledger.apply_entry(wallet, Decimal("-50.01"))
    assert wallet.balance == Decimal("50.00")

    assert ledger.apply_entry(wallet, Decimal("-50.00")) == Decimal("0.00")
    assert wallet.version == 1


@pytest.mark.asyncio
async def test_create_account_is_idempotent(db_session, make_account):
    first = await make_account(1, pin=None)
    again = await AccountService.create_account(db_session, 1, "user1")

    assert first.created and not again.created
    assert again.wallet.id == first.wallet.id
    assert again.wallet.balance == Decimal("0.00")
    assert len(again.wallet.virtual_account_number) == 10


@pytest.mark.asyncio
async def test_topup_replay_credits_once(db_session, make_account):
    await make_account(1, pin=None)

    first = await AccountService.topup(db_session, 1, "250.00", reference="PSK-1")
    replay = await AccountService.topup(db_session, 1, "250.00", reference="PSK-1")

    assert not first.replayed and replay.replayed
    assert replay.transaction_id == first.transaction_id
    assert await AccountService.get_balance(db_session, 1) == Decimal("250.00")


@pytest.mark.asyncio
async def test_completed_entry_is_immutable(db_session, make_account):
    await make_account(1, balance="100.00", pin=None)
    entry = (await db_session.execute(select(LedgerEntry))).scalars().first()
    assert entry.status == LedgerEntryStatus.COMPLETED

    with pytest.raises(InternalLedgerError):
        entry.fail("late failure")

    with pytest.raises(InternalLedgerError):
        async with atomic(db_session):
            entry.amount = Decimal("1.00")

    fresh = await db_session.get(LedgerEntry, entry.id, populate_existing=True)
    assert fresh.amount == Decimal("100.00")


@pytest.mark.asyncio
async def test_insufficient_funds_leaves_failed_entry(db_session, make_account):
    await make_account(1, balance="100.00")
    await make_account(2)

    with pytest.raises(InsufficientFundsError):
        await TransferService.transfer(db_session, 1, 2, "150.00", pin="1234")

    failed = (await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.status == LedgerEntryStatus.FAILED)
    )).scalars().all()
    assert len(failed) == 1
    assert failed[0].entry_type == LedgerEntryType.TRANSFER
    assert failed[0].idempotency_key is None
    assert await AccountService.get_balance(db_session, 1) == Decimal("100.00")
    assert await AccountService.get_balance(db_session, 2) == Decimal("0.00")


@pytest.mark.asyncio
async def test_deactivation_requires_empty_wallet(db_session, make_account):
    await make_account(1, balance="10.00", pin=None)
    with pytest.raises(LedgerValidationError):
        await AccountService.deactivate_wallet(db_session, 1, admin_id=99)

    await make_account(2, pin=None)
    wallet = await AccountService.deactivate_wallet(db_session, 2, admin_id=99)
    assert not wallet.is_active
    assert wallet.deactivated_at is not None

    with pytest.raises(LedgerValidationError):
        await AccountService.topup(db_session, 2, "10.00", reference="PSK-dead")


@pytest.mark.asyncio
async def test_history_lists_both_directions(db_session, make_account):
    await make_account(1, balance="300.00")
    await make_account(2)
    await TransferService.transfer(db_session, 1, 2, "120.00", pin="1234")

    wallet_1 = await ledger.get_wallet(db_session, 1)
    wallet_2 = await ledger.get_wallet(db_session, 2)
    sender_entries = await ledger.list_wallet_entries(db_session, wallet_1.id)
    recipient_entries = await ledger.list_wallet_entries(db_session, wallet_2.id)

    assert [e.entry_type for e in sender_entries] == [LedgerEntryType.TRANSFER, LedgerEntryType.TOPUP]
    assert [e.entry_type for e in recipient_entries] == [LedgerEntryType.TRANSFER]
    topups = await ledger.list_wallet_entries(db_session, wallet_1.id, entry_type=LedgerEntryType.TOPUP)
    assert len(topups) == 1


@pytest.mark.asyncio
async def test_movements_are_recorded_as_activity(db_session, make_account):
    await make_account(1, balance="300.00")
    await make_account(2)
    await TransferService.transfer(db_session, 1, 2, "120.00", pin="1234")

    actions = (await db_session.execute(select(ActivityLog.action, ActivityLog.user_id))).all()
    assert ("TRANSFER_SENT", 1) in actions
    assert ("TRANSFER_RECEIVED", 2) in actions
    assert ("TOPUP_RECEIVED", 1) in actions
