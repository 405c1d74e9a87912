"""
HourGlass Plan Service (Domain Logic).

Recurring fixed-amount savings deductions, driven by an external tick
calling process_due(now).

Per due plan, under the plan + wallet locks and in one transaction:
- now >= end_date        -> COMPLETED (takes precedence over a due deduction)
- deduction succeeds     -> current_saved += amount, advance one cycle
- insufficient funds     -> date unchanged, consecutive_failures + 1,
                            auto-pause at settings.recurring_max_failed_attempts

Each cycle's entry carries idempotency key plan:{id}:cycle:{scheduled date},
so re-running a sweep never deducts twice for the same cycle.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow, as_utc
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import (
    AppException,
    InsufficientFundsError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from splitspace.app.core.locking import account_locks, plan_key, wallet_key
from splitspace.app.core.money import parse_amount, to_money, ZERO
from splitspace.app.core.transactions import atomic
from splitspace.app.domain.hourglass.schedule import deduction_date
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryType
from splitspace.app.models.plan_enums import Recurrence, PlanStatus
from splitspace.app.models.recurring_plan import RecurringPlan
from splitspace.app.services import ledger
from splitspace.app.services.activity import ActivityAction
from splitspace.app.services.events import LedgerEvent, event_publisher

logger = logging.getLogger(__name__)

OUTCOME_DEDUCTED = "deducted"
OUTCOME_INSUFFICIENT_FUNDS = "insufficient_funds"
OUTCOME_PAUSED = "paused"
OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"


@dataclass
class DeductionResult:
    plan_id: int
    outcome: str
    amount: Decimal = ZERO
    transaction_id: Optional[int] = None
    current_saved: Decimal = ZERO
    next_deduction_date: Optional[datetime] = None


def cycle_idempotency_key(plan_id: int, scheduled: datetime) -> str:
    return f"plan:{plan_id}:cycle:{scheduled.isoformat()}"


async def _load_plan(db: AsyncSession, plan_id: int, for_update: bool = False) -> RecurringPlan:
    query = select(RecurringPlan).where(RecurringPlan.id == plan_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    plan = result.scalar_one_or_none()
    if not plan:
        raise ResourceNotFoundError("Plan", plan_id)
    return plan


async def _load_owned_plan(db: AsyncSession, plan_id: int, user_id: int) -> RecurringPlan:
    plan = await _load_plan(db, plan_id)
    if plan.user_id != user_id:
        raise ResourceNotFoundError("Plan", plan_id)
    return plan


def _deduct(db: AsyncSession, plan: RecurringPlan, wallet, scheduled: datetime, now: datetime) -> LedgerEntry:
    """Debit one cycle and advance the schedule. Caller commits."""
    amount = to_money(plan.deduction_amount)
    new_balance = ledger.apply_entry(wallet, -amount)
    entry = ledger.new_entry(
        db,
        LedgerEntryType.RECURRING_DEDUCTION,
        amount,
        from_wallet=wallet,
        description=f"HourGlass: {plan.name}",
        idempotency_key=cycle_idempotency_key(plan.id, scheduled),
        plan_id=plan.id,
        now=now,
    )
    entry.complete(now=now, from_balance_after=new_balance)

    plan.current_saved = to_money(plan.current_saved) + amount
    plan.cycle_index = (plan.cycle_index or 0) + 1
    plan.next_deduction_date = deduction_date(plan.schedule_anchor, plan.recurrence, plan.cycle_index)
    plan.consecutive_failures = 0
    plan.last_failed_at = None
    plan.last_deduction_at = now
    return entry


def _plan_event(plan: RecurringPlan, action: str, now: datetime, **metadata) -> LedgerEvent:
    return LedgerEvent(
        user_id=plan.user_id,
        action=action,
        resource_type="plan",
        resource_id=plan.id,
        metadata={"name": plan.name, "current_saved": plan.current_saved, **metadata},
        timestamp=now,
    )


class RecurringPlanService:

    @staticmethod
    async def create_plan(
        db: AsyncSession,
        user_id: int,
        name: str,
        target_amount,
        deduction_amount,
        recurrence: Recurrence,
        end_date: datetime,
        start_date: Optional[datetime] = None,
        deduct_immediately: bool = True,
        now: Optional[datetime] = None
    ) -> RecurringPlan:
        """
        Create a plan.

        By default the first amount is deducted immediately and the schedule is
        anchored at creation time. With deduct_immediately=False the first
        deduction falls on start_date (or one cycle from now).

        Raises:
            LedgerValidationError: bad amounts or dates
            InsufficientFundsError: not enough balance for the first deduction
        """
        now = now or utcnow()
        end_date = as_utc(end_date)
        start_date = as_utc(start_date)
        name = (name or "").strip()
        if not name:
            raise LedgerValidationError("Plan name is required")
        target = parse_amount(target_amount, "target_amount")
        deduction = parse_amount(deduction_amount, "deduction_amount")
        if deduction > target:
            raise LedgerValidationError("Deduction amount cannot exceed the target amount")
        if end_date is None or end_date <= now:
            raise LedgerValidationError("End date must be in the future")
        if start_date is not None and (start_date < now or start_date >= end_date):
            raise LedgerValidationError("Start date must be between now and the end date")

        if deduct_immediately:
            anchor, first_cycle = now, 0
        elif start_date is not None:
            anchor, first_cycle = start_date, 0
        else:
            anchor, first_cycle = now, 1

        async with account_locks.hold(wallet_key(user_id)):
            wallet_id = None
            try:
                async with atomic(db):
                    wallet = (await ledger.lock_wallets(db, [user_id]))[user_id]
                    wallet_id = wallet.id
                    plan = RecurringPlan(
                        user_id=user_id,
                        name=name,
                        target_amount=target,
                        deduction_amount=deduction,
                        current_saved=ZERO,
                        recurrence=recurrence,
                        schedule_anchor=anchor,
                        cycle_index=first_cycle,
                        next_deduction_date=deduction_date(anchor, recurrence, first_cycle),
                        end_date=end_date,
                        status=PlanStatus.ACTIVE,
                        consecutive_failures=0,
                        created_at=now,
                    )
                    db.add(plan)
                    await db.flush()

                    entry = None
                    if deduct_immediately:
                        entry = _deduct(db, plan, wallet, anchor, now)
            except InsufficientFundsError as exc:
                await ledger.record_failed_entry(
                    db,
                    LedgerEntryType.RECURRING_DEDUCTION,
                    deduction,
                    reason=exc.message,
                    from_wallet_id=wallet_id,
                    description=f"HourGlass: {name} - first deduction",
                    now=now,
                )
                raise

            events = [_plan_event(plan, ActivityAction.PLAN_CREATED, now, recurrence=recurrence, end_date=end_date)]
            if entry is not None:
                events.append(_plan_event(plan, ActivityAction.PLAN_DEDUCTION, now, amount=deduction, transaction_id=entry.id))
            await event_publisher.emit(db, *events)

        logger.info("Plan %s created for user %s (%s x %s)", plan.id, user_id, deduction, recurrence.value)
        return plan

    @staticmethod
    async def process_plan(db: AsyncSession, plan_id: int, now: Optional[datetime] = None) -> Optional[DeductionResult]:
        """
        Handle one plan's due cycle. Returns None when nothing is due.
        """
        now = now or utcnow()
        owner_id = (await _load_plan(db, plan_id)).user_id
        events: List[LedgerEvent] = []

        async with account_locks.hold(plan_key(plan_id), wallet_key(owner_id)):
            async with atomic(db):
                plan = await _load_plan(db, plan_id, for_update=True)
                if plan.status != PlanStatus.ACTIVE:
                    return None

                if now >= plan.end_date:
                    plan.status = PlanStatus.COMPLETED
                    plan.completed_at = now
                    events.append(_plan_event(plan, ActivityAction.PLAN_COMPLETED, now))
                    result = DeductionResult(plan_id, OUTCOME_COMPLETED, current_saved=to_money(plan.current_saved))

                elif plan.next_deduction_date > now:
                    return None

                elif plan.last_failed_at is not None and plan.last_failed_at >= now:
                    # Already failed at this instant; wait for a later tick
                    return DeductionResult(
                        plan_id, OUTCOME_SKIPPED,
                        current_saved=to_money(plan.current_saved),
                        next_deduction_date=plan.next_deduction_date,
                    )

                else:
                    scheduled = plan.next_deduction_date
                    wallet = (await ledger.lock_wallets(db, [plan.user_id]))[plan.user_id]
                    amount = to_money(plan.deduction_amount)
                    try:
                        entry = _deduct(db, plan, wallet, scheduled, now)
                    except InsufficientFundsError as exc:
                        result = RecurringPlanService._record_failure(db, plan, wallet, amount, exc, now, events)
                    else:
                        await db.flush()
                        events.append(_plan_event(
                            plan, ActivityAction.PLAN_DEDUCTION, now,
                            amount=amount, transaction_id=entry.id, scheduled_for=scheduled,
                        ))
                        result = DeductionResult(
                            plan_id, OUTCOME_DEDUCTED,
                            amount=amount,
                            transaction_id=entry.id,
                            current_saved=to_money(plan.current_saved),
                            next_deduction_date=plan.next_deduction_date,
                        )

            await event_publisher.emit(db, *events)
        return result

    @staticmethod
    def _record_failure(db, plan, wallet, amount, exc, now, events) -> DeductionResult:
        """Failed entry + failure counters, in the sweep's transaction."""
        failed = ledger.new_entry(
            db,
            LedgerEntryType.RECURRING_DEDUCTION,
            amount,
            from_wallet=wallet,
            description=f"HourGlass: {plan.name}",
            plan_id=plan.id,
            now=now,
        )
        failed.fail(exc.message, now=now)

        plan.consecutive_failures = (plan.consecutive_failures or 0) + 1
        plan.last_failed_at = now
        events.append(_plan_event(
            plan, ActivityAction.PLAN_DEDUCTION_FAILED, now,
            amount=amount, reason=exc.message, consecutive_failures=plan.consecutive_failures,
        ))

        max_failures = settings.recurring_max_failed_attempts
        if max_failures and plan.consecutive_failures >= max_failures:
            plan.status = PlanStatus.PAUSED
            plan.paused_at = now
            events.append(_plan_event(plan, ActivityAction.PLAN_PAUSED, now, reason="insufficient_funds"))
            logger.warning("Plan %s auto-paused after %d failed deductions", plan.id, plan.consecutive_failures)
            outcome = OUTCOME_PAUSED
        else:
            outcome = OUTCOME_INSUFFICIENT_FUNDS

        return DeductionResult(
            plan.id, outcome,
            amount=amount,
            current_saved=to_money(plan.current_saved),
            next_deduction_date=plan.next_deduction_date,
        )

    @staticmethod
    async def process_due(db: AsyncSession, now: Optional[datetime] = None) -> List[DeductionResult]:
        """
        Sweep all active plans that are due or past their end date.

        At most one cycle per plan per call; a plan that is several cycles
        behind catches up one cycle per tick. Safe to re-run with the same now.
        """
        now = now or utcnow()
        due = await db.execute(
            select(RecurringPlan.id).where(
                RecurringPlan.status == PlanStatus.ACTIVE,
                or_(RecurringPlan.next_deduction_date <= now, RecurringPlan.end_date <= now),
            ).order_by(RecurringPlan.id)
        )

        results = []
        for plan_id in due.scalars().all():
            try:
                result = await RecurringPlanService.process_plan(db, plan_id, now)
            except AppException as exc:
                logger.error("Plan %s sweep failed: %s (%s)", plan_id, exc.message, exc.error_code)
                continue
            if result is not None:
                results.append(result)

        logger.info("HourGlass sweep at %s processed %d plans", now.isoformat(), len(results))
        return results

    @staticmethod
    async def pause_plan(db: AsyncSession, user_id: int, plan_id: int, now: Optional[datetime] = None) -> RecurringPlan:
        """ACTIVE -> PAUSED. Pausing a paused plan is a no-op."""
        now = now or utcnow()
        await _load_owned_plan(db, plan_id, user_id)

        async with account_locks.hold(plan_key(plan_id)):
            async with atomic(db):
                plan = await _load_plan(db, plan_id, for_update=True)
                if plan.status == PlanStatus.PAUSED:
                    return plan
                if plan.status != PlanStatus.ACTIVE:
                    raise LedgerValidationError(f"Plan is {plan.status.value}")
                plan.status = PlanStatus.PAUSED
                plan.paused_at = now

            await event_publisher.emit(db, _plan_event(plan, ActivityAction.PLAN_PAUSED, now, reason="user"))
        return plan

    @staticmethod
    async def resume_plan(db: AsyncSession, user_id: int, plan_id: int, now: Optional[datetime] = None) -> RecurringPlan:
        """
        PAUSED -> ACTIVE. The schedule is re-anchored at the resume time, so the
        next deduction is one recurrence unit from now.

        Raises:
            LedgerValidationError: plan is terminal or already past its end date
        """
        now = now or utcnow()
        await _load_owned_plan(db, plan_id, user_id)

        async with account_locks.hold(plan_key(plan_id)):
            async with atomic(db):
                plan = await _load_plan(db, plan_id, for_update=True)
                if plan.status == PlanStatus.ACTIVE:
                    return plan
                if plan.status != PlanStatus.PAUSED:
                    raise LedgerValidationError(f"Plan is {plan.status.value}")
                if now >= plan.end_date:
                    raise LedgerValidationError("Plan has passed its end date")

                plan.status = PlanStatus.ACTIVE
                plan.schedule_anchor = now
                plan.cycle_index = 1
                plan.next_deduction_date = deduction_date(now, plan.recurrence, 1)
                plan.consecutive_failures = 0
                plan.last_failed_at = None
                plan.paused_at = None

            await event_publisher.emit(db, _plan_event(
                plan, ActivityAction.PLAN_RESUMED, now, next_deduction_date=plan.next_deduction_date,
            ))
        return plan

    @staticmethod
    async def cancel_plan(db: AsyncSession, user_id: int, plan_id: int, now: Optional[datetime] = None) -> RecurringPlan:
        """
        Refund everything saved back to the owner's wallet and mark CANCELLED.
        Cancelling a cancelled plan is a no-op.

        Raises:
            LedgerValidationError: plan already completed
        """
        now = now or utcnow()
        await _load_owned_plan(db, plan_id, user_id)
        refunded = ZERO
        entry = None

        async with account_locks.hold(plan_key(plan_id), wallet_key(user_id)):
            async with atomic(db):
                plan = await _load_plan(db, plan_id, for_update=True)
                if plan.status == PlanStatus.CANCELLED:
                    return plan
                if plan.status == PlanStatus.COMPLETED:
                    raise LedgerValidationError("Plan is completed")

                refunded = to_money(plan.current_saved)
                if refunded > ZERO:
                    wallet = (await ledger.lock_wallets(db, [user_id], require_active=False))[user_id]
                    new_balance = ledger.apply_entry(wallet, refunded)
                    entry = ledger.new_entry(
                        db,
                        LedgerEntryType.RECURRING_REFUND,
                        refunded,
                        to_wallet=wallet,
                        description=f"HourGlass cancelled: {plan.name} - Refund",
                        idempotency_key=f"plan:{plan_id}:refund",
                        plan_id=plan_id,
                        now=now,
                    )
                    entry.complete(now=now, to_balance_after=new_balance)

                plan.current_saved = ZERO
                plan.status = PlanStatus.CANCELLED
                plan.cancelled_at = now

            await event_publisher.emit(db, _plan_event(
                plan, ActivityAction.PLAN_CANCELLED, now,
                refunded=refunded, transaction_id=entry.id if entry else None,
            ))

        logger.info("Plan %s cancelled, %s refunded to user %s", plan_id, refunded, user_id)
        return plan

    @staticmethod
    async def list_plans(db: AsyncSession, user_id: int, status: Optional[PlanStatus] = None) -> List[RecurringPlan]:
        query = select(RecurringPlan).where(RecurringPlan.user_id == user_id)
        if status:
            query = query.where(RecurringPlan.status == status)
        result = await db.execute(query.order_by(RecurringPlan.created_at.desc(), RecurringPlan.id.desc()))
        return result.scalars().all()
