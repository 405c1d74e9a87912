"""
HourGlass recurring savings tests.

Schedule arithmetic, sweep idempotency, failure handling and the
pause / resume / cancel / complete lifecycle.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import select

from splitspace.app.core.exceptions import InsufficientFundsError, LedgerValidationError, ResourceNotFoundError
from splitspace.app.domain.hourglass.plan_service import (
    OUTCOME_COMPLETED,
    OUTCOME_DEDUCTED,
    OUTCOME_INSUFFICIENT_FUNDS,
    OUTCOME_PAUSED,
    RecurringPlanService,
)
from splitspace.app.domain.hourglass.schedule import deduction_date
from splitspace.app.domain.wallet.account_service import AccountService
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryStatus, LedgerEntryType
from splitspace.app.models.plan_enums import PlanStatus, Recurrence
from splitspace.app.models.recurring_plan import RecurringPlan

T0 = datetime(2026, 3, 2, 9, 0, 0)


async def _balance(db, user_id):
    return await AccountService.get_balance(db, user_id)


async def _weekly_plan(db, user_id=1, amount="100.00", target="1000.00", now=T0, **kwargs):
    return await RecurringPlanService.create_plan(
        db,
        user_id=user_id,
        name="Rainy day",
        target_amount=target,
        deduction_amount=amount,
        recurrence=Recurrence.WEEKLY,
        end_date=now + timedelta(weeks=10),
        now=now,
        **kwargs,
    )


def test_month_end_anchor_does_not_drift():
    anchor = datetime(2026, 1, 31, 10, 0)
    dates = [deduction_date(anchor, Recurrence.MONTHLY, n) for n in range(1, 5)]
    assert [d.date().isoformat() for d in dates] == ["2026-02-28", "2026-03-31", "2026-04-30", "2026-05-31"]


@pytest.mark.asyncio
async def test_first_deduction_is_immediate(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)

    plan = await _weekly_plan(db_session)

    assert plan.status == PlanStatus.ACTIVE
    assert plan.current_saved == Decimal("100.00")
    assert plan.next_deduction_date == T0 + timedelta(weeks=1)
    assert await _balance(db_session, 1) == Decimal("900.00")


@pytest.mark.asyncio
async def test_deferred_start(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)

    plan = await _weekly_plan(db_session, deduct_immediately=False)
    assert plan.current_saved == Decimal("0.00")
    assert plan.next_deduction_date == T0 + timedelta(weeks=1)

    start = T0 + timedelta(days=3)
    scheduled = await _weekly_plan(db_session, deduct_immediately=False, start_date=start)
    assert scheduled.next_deduction_date == start
    assert await _balance(db_session, 1) == Decimal("1000.00")


@pytest.mark.asyncio
async def test_plan_validation(db_session, make_account):
    await make_account(1, balance="50.00", pin=None)

    with pytest.raises(LedgerValidationError):
        await _weekly_plan(db_session, amount="200.00", target="100.00")
    with pytest.raises(LedgerValidationError):
        await RecurringPlanService.create_plan(
            db_session, 1, "Late", "100.00", "10.00", Recurrence.DAILY, end_date=T0 - timedelta(days=1), now=T0
        )
    with pytest.raises(InsufficientFundsError):
        await _weekly_plan(db_session, amount="100.00")

    assert (await db_session.execute(select(RecurringPlan))).scalars().all() == []


@pytest.mark.asyncio
async def test_sweep_is_idempotent_per_cycle(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)
    plan = await _weekly_plan(db_session)
    due_at = T0 + timedelta(weeks=1)

    assert await RecurringPlanService.process_due(db_session, due_at - timedelta(seconds=1)) == []

    results = await RecurringPlanService.process_due(db_session, due_at)
    assert [r.outcome for r in results] == [OUTCOME_DEDUCTED]
    assert results[0].next_deduction_date == T0 + timedelta(weeks=2)

    assert await RecurringPlanService.process_due(db_session, due_at) == []
    assert await _balance(db_session, 1) == Decimal("800.00")

    keys = (await db_session.execute(
        select(LedgerEntry.idempotency_key).where(LedgerEntry.plan_id == plan.id)
    )).scalars().all()
    assert len(keys) == len(set(keys)) == 2


@pytest.mark.asyncio
async def test_monthly_plan_follows_anchor(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)
    anchor = datetime(2026, 1, 31, 10, 0)
    plan = await RecurringPlanService.create_plan(
        db_session, 1, "Monthly", "1000.00", "50.00", Recurrence.MONTHLY,
        end_date=datetime(2026, 12, 31), now=anchor,
    )
    assert plan.next_deduction_date == datetime(2026, 2, 28, 10, 0)

    await RecurringPlanService.process_due(db_session, datetime(2026, 2, 28, 10, 0))
    [after_march] = await RecurringPlanService.process_due(db_session, datetime(2026, 3, 31, 10, 0))
    assert after_march.next_deduction_date == datetime(2026, 4, 30, 10, 0)
    assert after_march.current_saved == Decimal("150.00")


@pytest.mark.asyncio
async def test_repeated_failures_auto_pause(db_session, make_account):
    await make_account(1, balance="100.00", pin=None)
    plan = await _weekly_plan(db_session)
    due_at = plan.next_deduction_date

    outcomes = []
    for hours in range(3):
        [result] = await RecurringPlanService.process_due(db_session, due_at + timedelta(hours=hours))
        outcomes.append(result.outcome)
        assert result.next_deduction_date == due_at

    assert outcomes == [OUTCOME_INSUFFICIENT_FUNDS, OUTCOME_INSUFFICIENT_FUNDS, OUTCOME_PAUSED]
    paused = (await RecurringPlanService.list_plans(db_session, 1, status=PlanStatus.PAUSED))[0]
    assert paused.consecutive_failures == 3
    assert paused.current_saved == Decimal("100.00")

    failed = (await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.status == LedgerEntryStatus.FAILED)
    )).scalars().all()
    assert len(failed) == 3
    assert all(e.entry_type == LedgerEntryType.RECURRING_DEDUCTION for e in failed)

    # Paused plans are ignored by the sweep
    assert await RecurringPlanService.process_due(db_session, due_at + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_success_resets_failure_counter(db_session, make_account):
    await make_account(1, balance="100.00", pin=None)
    plan = await _weekly_plan(db_session)
    due_at = plan.next_deduction_date

    [failed] = await RecurringPlanService.process_due(db_session, due_at)
    assert failed.outcome == OUTCOME_INSUFFICIENT_FUNDS

    await AccountService.topup(db_session, 1, "500.00", reference="PSK-refill")
    [ok] = await RecurringPlanService.process_due(db_session, due_at + timedelta(hours=1))
    assert ok.outcome == OUTCOME_DEDUCTED

    refreshed = (await RecurringPlanService.list_plans(db_session, 1))[0]
    assert refreshed.consecutive_failures == 0


@pytest.mark.asyncio
async def test_pause_and_resume_reanchors(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)
    plan = await _weekly_plan(db_session)

    paused = await RecurringPlanService.pause_plan(db_session, 1, plan.id, now=T0 + timedelta(days=1))
    assert paused.status == PlanStatus.PAUSED
    assert await RecurringPlanService.process_due(db_session, T0 + timedelta(weeks=2)) == []

    resumed_at = T0 + timedelta(weeks=2, hours=3)
    resumed = await RecurringPlanService.resume_plan(db_session, 1, plan.id, now=resumed_at)
    assert resumed.status == PlanStatus.ACTIVE
    assert resumed.next_deduction_date == resumed_at + timedelta(weeks=1)
    assert await _balance(db_session, 1) == Decimal("900.00")


@pytest.mark.asyncio
async def test_cancel_refunds_saved_amount(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)
    await make_account(2, pin=None)
    plan = await _weekly_plan(db_session)
    await RecurringPlanService.process_due(db_session, T0 + timedelta(weeks=1))
    assert await _balance(db_session, 1) == Decimal("800.00")

    with pytest.raises(ResourceNotFoundError):
        await RecurringPlanService.cancel_plan(db_session, 2, plan.id)

    cancelled = await RecurringPlanService.cancel_plan(db_session, 1, plan.id)
    assert cancelled.status == PlanStatus.CANCELLED
    assert cancelled.current_saved == Decimal("0.00")
    assert await _balance(db_session, 1) == Decimal("1000.00")

    await RecurringPlanService.cancel_plan(db_session, 1, plan.id)
    assert await _balance(db_session, 1) == Decimal("1000.00")

    refunds = (await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.entry_type == LedgerEntryType.RECURRING_REFUND)
    )).scalars().all()
    assert len(refunds) == 1
    assert refunds[0].amount == Decimal("200.00")

    with pytest.raises(LedgerValidationError):
        await RecurringPlanService.resume_plan(db_session, 1, plan.id)


@pytest.mark.asyncio
async def test_end_date_completes_plan(db_session, make_account):
    await make_account(1, balance="1000.00", pin=None)
    plan = await _weekly_plan(db_session)

    [result] = await RecurringPlanService.process_due(db_session, plan.end_date)

    assert result.outcome == OUTCOME_COMPLETED
    assert result.current_saved == Decimal("100.00")
    completed = (await RecurringPlanService.list_plans(db_session, 1, status=PlanStatus.COMPLETED))[0]
    assert completed.completed_at == plan.end_date
    assert await _balance(db_session, 1) == Decimal("900.00")

    with pytest.raises(LedgerValidationError):
        await RecurringPlanService.cancel_plan(db_session, 1, plan.id)
