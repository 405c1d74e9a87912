"""
Room Service (Domain Logic).

Money Rooms: pooled escrow with conditional release.

    OPEN --[condition met | admin/creator unlock]--> UNLOCKED  (pot to creator)
    OPEN --[admin/creator refund]------------------> ARCHIVED  (pot back to contributors)

Both transitions are terminal. A contribution and its unlock evaluation happen
in the same transaction, under the room lock.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow, as_utc
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import (
    AppException,
    ConcurrencyConflictError,
    InsufficientFundsError,
    InsufficientPermissionsError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from splitspace.app.core.locking import account_locks, room_key, wallet_key
from splitspace.app.core.money import parse_amount, to_money, ZERO
from splitspace.app.core.transactions import atomic
from splitspace.app.domain.rooms.unlock_rules import UnlockTrigger, should_unlock, validate_room_terms
from splitspace.app.models.enums import UserRole
from splitspace.app.models.ledger_entry import LedgerEntry
from splitspace.app.models.ledger_enums import LedgerEntryType
from splitspace.app.models.room import Room, RoomMember, RoomContribution
from splitspace.app.models.room_enums import RoomUnlockType, RoomStatus, ContributionStatus
from splitspace.app.models.user import User
from splitspace.app.models.wallet import Wallet
from splitspace.app.services import ledger
from splitspace.app.services.activity import ActivityAction
from splitspace.app.services.events import LedgerEvent, event_publisher
from splitspace.app.services.limits import LimitChecker
from splitspace.app.services.pin_gate import PinGate

logger = logging.getLogger(__name__)

INVITE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class ContributionResult:
    contribution_id: int
    transaction_id: int
    reference: str
    new_room_amount: Decimal
    new_balance: Decimal
    unlocked: bool = False
    unlock_transaction_id: Optional[int] = None


@dataclass
class UnlockResult:
    room: Room
    unlocked_now: bool
    released_amount: Decimal = ZERO
    transaction_id: Optional[int] = None


@dataclass
class RefundResult:
    room: Room
    refunds: Dict[int, Decimal] = field(default_factory=dict)  # user_id -> amount
    transaction_ids: List[int] = field(default_factory=list)


def generate_invite_code(length: Optional[int] = None) -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length or settings.invite_code_length))


async def _unique_invite_code(db: AsyncSession) -> str:
    for _ in range(settings.invite_code_max_attempts):
        code = generate_invite_code()
        taken = await db.execute(select(Room.id).where(Room.invite_code == code))
        if taken.scalar_one_or_none() is None:
            return code
    raise ConcurrencyConflictError("Could not allocate a unique invite code, please retry")


async def _load_room(db: AsyncSession, room_id: int, for_update: bool = False) -> Room:
    query = select(Room).where(Room.id == room_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    room = result.scalar_one_or_none()
    if not room:
        raise ResourceNotFoundError("Room", room_id)
    return room


async def _is_member(db: AsyncSession, room_id: int, user_id: int) -> bool:
    result = await db.execute(
        select(RoomMember.id).where(RoomMember.room_id == room_id, RoomMember.user_id == user_id)
    )
    return result.scalar_one_or_none() is not None


def _check_manage_permission(room: Room, actor_id: int, actor_role: UserRole) -> None:
    """Admins may force any room; creators only manage MANUAL rooms."""
    if actor_role == UserRole.ADMIN:
        return
    if room.creator_id == actor_id and room.unlock_type == RoomUnlockType.MANUAL:
        return
    raise InsufficientPermissionsError("Only an admin, or the creator of a manual room, can do this")


def _release(db: AsyncSession, room: Room, creator_wallet: Wallet, now: datetime) -> Optional[LedgerEntry]:
    """Credit the whole pot to the creator and mark the room UNLOCKED. Caller commits."""
    amount = to_money(room.current_amount)
    entry = None
    if amount > ZERO:
        new_balance = ledger.apply_entry(creator_wallet, amount)
        entry = ledger.new_entry(
            db,
            LedgerEntryType.ROOM_UNLOCK,
            amount,
            to_wallet=creator_wallet,
            description=f"Room '{room.name}' unlocked",
            idempotency_key=f"room:{room.id}:unlock",
            room_id=room.id,
            now=now,
        )
        entry.complete(now=now, to_balance_after=new_balance)

    room.status = RoomStatus.UNLOCKED
    room.unlocked_at = now
    room.released_amount = amount
    return entry


def _unlock_event(room: Room, entry: Optional[LedgerEntry], now: datetime) -> LedgerEvent:
    return LedgerEvent(
        user_id=room.creator_id,
        action=ActivityAction.ROOM_UNLOCKED,
        resource_type="room",
        resource_id=room.id,
        metadata={
            "amount": room.released_amount,
            "transaction_id": entry.id if entry else None,
            "unlock_type": room.unlock_type,
        },
        timestamp=now,
    )


class RoomService:

    @staticmethod
    async def create_room(
        db: AsyncSession,
        creator_id: int,
        name: str,
        unlock_type: RoomUnlockType,
        target_amount=None,
        unlock_date: Optional[datetime] = None,
        description: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Room:
        """
        Create a room and add the creator as its first member.

        Args:
            db: Database session
            creator_id: Room owner; receives the pot on unlock
            name: Display name
            unlock_type: Release condition
            target_amount: Required (> 0) for target-based rooms
            unlock_date: Required (strictly future) for date-based rooms
            description: Optional text
            now: Evaluation time (naive UTC)

        Returns:
            Created Room (with invite_code)

        Raises:
            LedgerValidationError: inconsistent terms
            ResourceNotFoundError: creator has no wallet
        """
        now = now or utcnow()
        unlock_date = as_utc(unlock_date)
        name = (name or "").strip()
        if not name:
            raise LedgerValidationError("Room name is required")

        target = parse_amount(target_amount, "target_amount") if target_amount not in (None, 0, "0") else ZERO
        validate_room_terms(unlock_type, target, unlock_date, now)

        creator_wallet = await ledger.get_wallet(db, creator_id)
        if not creator_wallet.is_active:
            raise LedgerValidationError("Wallet is deactivated")

        async with atomic(db):
            room = Room(
                creator_id=creator_id,
                name=name,
                description=description,
                target_amount=target,
                current_amount=ZERO,
                currency=creator_wallet.currency,
                unlock_type=unlock_type,
                unlock_date=unlock_date,
                status=RoomStatus.OPEN,
                invite_code=await _unique_invite_code(db),
                invite_expires_at=(
                    now + timedelta(days=settings.invite_code_ttl_days) if settings.invite_code_ttl_days else None
                ),
                created_at=now,
            )
            db.add(room)
            await db.flush()
            db.add(RoomMember(room_id=room.id, user_id=creator_id, joined_at=now))

        await event_publisher.emit(db, LedgerEvent(
            user_id=creator_id,
            action=ActivityAction.ROOM_CREATED,
            resource_type="room",
            resource_id=room.id,
            metadata={"name": name, "unlock_type": unlock_type, "target_amount": target},
            timestamp=now,
        ))
        logger.info("Room %s created by user %s (%s)", room.id, creator_id, unlock_type.value)
        return room

    @staticmethod
    async def join_room(db: AsyncSession, user_id: int, invite_code: str, now: Optional[datetime] = None) -> Tuple[Room, bool]:
        """
        Join a room by invite code. Joining twice is a no-op.

        Returns:
            (room, joined) where joined is False if already a member

        Raises:
            ResourceNotFoundError: unknown or expired code, or the room is closed
        """
        now = now or utcnow()
        code = (invite_code or "").strip().upper()

        result = await db.execute(select(Room).where(Room.invite_code == code))
        room = result.scalar_one_or_none()
        if (
            room is None
            or room.status != RoomStatus.OPEN
            or (room.invite_expires_at is not None and now >= room.invite_expires_at)
        ):
            raise ResourceNotFoundError("Room invite")

        await ledger.get_wallet(db, user_id)

        async with account_locks.hold(room_key(room.id)):
            if await _is_member(db, room.id, user_id):
                return room, False
            async with atomic(db):
                db.add(RoomMember(room_id=room.id, user_id=user_id, joined_at=now))

            await event_publisher.emit(db, LedgerEvent(
                user_id=user_id,
                action=ActivityAction.ROOM_JOINED,
                resource_type="room",
                resource_id=room.id,
                timestamp=now,
            ))
        return room, True

    @staticmethod
    async def contribute(
        db: AsyncSession,
        user_id: int,
        room_id: int,
        amount,
        pin: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ContributionResult:
        """
        Pay into a room, then evaluate its unlock condition in the same transaction.

        Flow:
        1. Lock room, contributor wallet and creator wallet
        2. PIN gate (when required by policy or supplied)
        3. Room must be OPEN, caller must be a member
        4. Limit check, debit, contribution row + linked entry
        5. current_amount += amount; release to creator if the condition holds

        Raises:
            LedgerValidationError: bad amount or room not open
            InsufficientPermissionsError: caller is not a member
            InsufficientFundsError, LimitExceededError, AuthFailedError, AuthLockedError
        """
        amount = parse_amount(amount)
        now = now or utcnow()
        creator_id = (await _load_room(db, room_id)).creator_id

        async with account_locks.hold(room_key(room_id), wallet_key(user_id), wallet_key(creator_id)):
            if pin or settings.require_pin_for_contributions:
                await PinGate.require_pin(db, user_id, pin, now)

            contributor_wallet_id = None
            try:
                async with atomic(db):
                    room = await _load_room(db, room_id, for_update=True)
                    if room.status != RoomStatus.OPEN:
                        raise LedgerValidationError("Room is not open for contributions", details={"status": room.status.value})
                    if not await _is_member(db, room_id, user_id):
                        raise InsufficientPermissionsError("Join the room before contributing")

                    user = await db.get(User, user_id)
                    wallets = await ledger.lock_wallets(db, {user_id, creator_id}, payout_only={creator_id} - {user_id})
                    wallet = wallets[user_id]
                    contributor_wallet_id = wallet.id

                    await LimitChecker.enforce(db, user, wallet, amount, LedgerEntryType.ROOM_CONTRIBUTION, now)

                    new_balance = ledger.apply_entry(wallet, -amount)
                    entry = ledger.new_entry(
                        db,
                        LedgerEntryType.ROOM_CONTRIBUTION,
                        amount,
                        from_wallet=wallet,
                        description=f"Contribution to '{room.name}'",
                        room_id=room_id,
                        now=now,
                    )
                    entry.complete(now=now, from_balance_after=new_balance)
                    await db.flush()

                    contribution = RoomContribution(
                        room_id=room_id,
                        user_id=user_id,
                        amount=amount,
                        status=ContributionStatus.CONFIRMED,
                        transaction_id=entry.id,
                        created_at=now,
                    )
                    db.add(contribution)
                    room.current_amount = to_money(room.current_amount) + amount

                    unlock_entry = None
                    unlocked = should_unlock(
                        room.unlock_type,
                        to_money(room.current_amount),
                        to_money(room.target_amount),
                        room.unlock_date,
                        now,
                        UnlockTrigger.CONTRIBUTION,
                    )
                    if unlocked:
                        unlock_entry = _release(db, room, wallets[creator_id], now)
                        # The creator's own contribution is credited straight back
                        if creator_id == user_id and unlock_entry is not None:
                            new_balance = unlock_entry.to_balance_after
                    await db.flush()
            except InsufficientFundsError as exc:
                await ledger.record_failed_entry(
                    db,
                    LedgerEntryType.ROOM_CONTRIBUTION,
                    amount,
                    reason=exc.message,
                    from_wallet_id=contributor_wallet_id,
                    room_id=room_id,
                    now=now,
                )
                raise

            events = [LedgerEvent(
                user_id=user_id,
                action=ActivityAction.ROOM_CONTRIBUTION,
                resource_type="room",
                resource_id=room_id,
                metadata={"amount": amount, "transaction_id": entry.id, "room_amount": room.current_amount},
                timestamp=now,
            )]
            if unlocked:
                events.append(_unlock_event(room, unlock_entry, now))
            await event_publisher.emit(db, *events)

        if unlocked:
            logger.info("Room %s unlocked by contribution, %s released", room_id, room.released_amount)
        return ContributionResult(
            contribution_id=contribution.id,
            transaction_id=entry.id,
            reference=entry.reference,
            new_room_amount=to_money(room.current_amount),
            new_balance=to_money(new_balance),
            unlocked=unlocked,
            unlock_transaction_id=unlock_entry.id if unlock_entry else None,
        )

    @staticmethod
    async def unlock_room(
        db: AsyncSession,
        actor_id: int,
        actor_role: UserRole,
        room_id: int,
        now: Optional[datetime] = None
    ) -> UnlockResult:
        """
        Explicitly release a room's pot to its creator. Idempotent.

        Raises:
            InsufficientPermissionsError: not admin, and not the creator of a manual room
            LedgerValidationError: room already archived (refunded)
        """
        now = now or utcnow()
        room = await _load_room(db, room_id)
        _check_manage_permission(room, actor_id, actor_role)

        async with account_locks.hold(room_key(room_id), wallet_key(room.creator_id)):
            async with atomic(db):
                room = await _load_room(db, room_id, for_update=True)
                if room.status == RoomStatus.UNLOCKED:
                    return UnlockResult(room=room, unlocked_now=False, released_amount=to_money(room.released_amount))
                if room.status == RoomStatus.ARCHIVED:
                    raise LedgerValidationError("Room has been refunded and archived")

                creator_wallet = (await ledger.lock_wallets(db, [room.creator_id], require_active=False))[room.creator_id]
                entry = _release(db, room, creator_wallet, now)

            await event_publisher.emit(db, _unlock_event(room, entry, now))

        logger.info("Room %s unlocked by user %s, %s released", room_id, actor_id, room.released_amount)
        return UnlockResult(
            room=room,
            unlocked_now=True,
            released_amount=to_money(room.released_amount),
            transaction_id=entry.id if entry else None,
        )

    @staticmethod
    async def refund_room(
        db: AsyncSession,
        actor_id: int,
        actor_role: UserRole,
        room_id: int,
        now: Optional[datetime] = None
    ) -> RefundResult:
        """
        Return every confirmed contribution to its contributor and archive the room.

        One refund entry per contributor; all credits, contribution updates and
        the archive commit together. Re-running on an archived room is a no-op.

        Raises:
            InsufficientPermissionsError: not admin, and not the creator of a manual room
            LedgerValidationError: room already unlocked
        """
        now = now or utcnow()
        room = await _load_room(db, room_id)
        _check_manage_permission(room, actor_id, actor_role)

        contributor_rows = await db.execute(
            select(RoomContribution.user_id).where(
                RoomContribution.room_id == room_id,
                RoomContribution.status == ContributionStatus.CONFIRMED,
            ).distinct()
        )
        contributor_ids = set(contributor_rows.scalars().all())
        lock_keys = [room_key(room_id)] + [wallet_key(uid) for uid in contributor_ids]

        async with account_locks.hold(*lock_keys):
            async with atomic(db):
                room = await _load_room(db, room_id, for_update=True)
                if room.status == RoomStatus.ARCHIVED:
                    return RefundResult(room=room)
                if room.status == RoomStatus.UNLOCKED:
                    raise LedgerValidationError("Room has already been unlocked")

                result = await db.execute(
                    select(RoomContribution).where(
                        RoomContribution.room_id == room_id,
                        RoomContribution.status == ContributionStatus.CONFIRMED,
                    ).order_by(RoomContribution.id)
                )
                contributions = result.scalars().all()

                totals: Dict[int, Decimal] = {}
                for contribution in contributions:
                    if contribution.user_id not in contributor_ids:
                        raise ConcurrencyConflictError("Room changed during refund, please retry")
                    totals[contribution.user_id] = totals.get(contribution.user_id, ZERO) + to_money(contribution.amount)

                wallets = await ledger.lock_wallets(db, totals.keys(), require_active=False) if totals else {}
                entries: Dict[int, LedgerEntry] = {}
                for uid in sorted(totals):
                    new_balance = ledger.apply_entry(wallets[uid], totals[uid])
                    entry = ledger.new_entry(
                        db,
                        LedgerEntryType.ROOM_REFUND,
                        totals[uid],
                        to_wallet=wallets[uid],
                        description=f"Refund from '{room.name}'",
                        idempotency_key=f"room:{room_id}:refund:{uid}",
                        room_id=room_id,
                        now=now,
                    )
                    entry.complete(now=now, to_balance_after=new_balance)
                    entries[uid] = entry
                await db.flush()

                for contribution in contributions:
                    contribution.status = ContributionStatus.REFUNDED
                    contribution.refunded_at = now
                    contribution.refund_transaction_id = entries[contribution.user_id].id

                room.current_amount = ZERO
                room.status = RoomStatus.ARCHIVED
                room.archived_at = now

            events = [
                LedgerEvent(
                    user_id=uid,
                    action=ActivityAction.ROOM_REFUNDED,
                    resource_type="room",
                    resource_id=room_id,
                    metadata={"amount": totals[uid], "transaction_id": entries[uid].id},
                    timestamp=now,
                )
                for uid in sorted(totals)
            ]
            if room.creator_id not in totals:
                events.append(LedgerEvent(
                    user_id=room.creator_id,
                    action=ActivityAction.ROOM_REFUNDED,
                    resource_type="room",
                    resource_id=room_id,
                    metadata={"amount": ZERO, "contributors": len(totals)},
                    timestamp=now,
                ))
            await event_publisher.emit(db, *events)

        logger.info("Room %s refunded to %d contributors by user %s", room_id, len(totals), actor_id)
        return RefundResult(room=room, refunds=totals, transaction_ids=[entries[uid].id for uid in sorted(entries)])

    @staticmethod
    async def evaluate_room(db: AsyncSession, room_id: int, now: Optional[datetime] = None) -> bool:
        """
        Sweep-style evaluation: considers both target and date conditions.

        Returns:
            True if this call unlocked the room
        """
        now = now or utcnow()
        room = await _load_room(db, room_id)

        async with account_locks.hold(room_key(room_id), wallet_key(room.creator_id)):
            async with atomic(db):
                room = await _load_room(db, room_id, for_update=True)
                if room.status != RoomStatus.OPEN or not should_unlock(
                    room.unlock_type,
                    to_money(room.current_amount),
                    to_money(room.target_amount),
                    room.unlock_date,
                    now,
                    UnlockTrigger.SWEEP,
                ):
                    return False
                creator_wallet = (await ledger.lock_wallets(db, [room.creator_id], require_active=False))[room.creator_id]
                entry = _release(db, room, creator_wallet, now)

            await event_publisher.emit(db, _unlock_event(room, entry, now))

        logger.info("Room %s unlocked on evaluation, %s released", room_id, room.released_amount)
        return True

    @staticmethod
    async def process_due_rooms(db: AsyncSession, now: Optional[datetime] = None) -> List[int]:
        """
        Unlock every open date-based room whose date has passed (and whose
        target is met, for target_and_date). Safe to re-run.

        Returns:
            IDs of rooms unlocked by this sweep
        """
        now = now or utcnow()
        result = await db.execute(
            select(Room.id).where(
                Room.status == RoomStatus.OPEN,
                Room.unlock_type.in_([RoomUnlockType.DATE_REACHED, RoomUnlockType.TARGET_AND_DATE]),
                Room.unlock_date <= now,
            ).order_by(Room.id)
        )
        unlocked = []
        for room_id in result.scalars().all():
            try:
                if await RoomService.evaluate_room(db, room_id, now):
                    unlocked.append(room_id)
            except AppException as exc:
                logger.error("Room %s evaluation failed: %s (%s)", room_id, exc.message, exc.error_code)
        return unlocked

    @staticmethod
    async def list_rooms(db: AsyncSession, user_id: int) -> List[Room]:
        """Rooms the user belongs to, newest first."""
        result = await db.execute(
            select(Room)
            .join(RoomMember, RoomMember.room_id == Room.id)
            .where(RoomMember.user_id == user_id)
            .order_by(Room.created_at.desc(), Room.id.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def require_viewer(db: AsyncSession, room_id: int, user_id: int, is_admin: bool = False) -> Room:
        """Load a room the caller may see: members and admins only."""
        room = await _load_room(db, room_id)
        if not is_admin and not await _is_member(db, room_id, user_id):
            raise InsufficientPermissionsError("You are not a member of this room")
        return room

    @staticmethod
    async def get_room_detail(db: AsyncSession, room_id: int, user_id: int, is_admin: bool = False):
        """
        Room with members and confirmed contribution totals per contributor.

        Returns:
            (room, members, totals) where totals maps user_id -> Decimal

        Raises:
            InsufficientPermissionsError: caller is neither a member nor an admin
        """
        room = await RoomService.require_viewer(db, room_id, user_id, is_admin)

        members = (await db.execute(
            select(RoomMember).where(RoomMember.room_id == room_id).order_by(RoomMember.joined_at, RoomMember.id)
        )).scalars().all()

        rows = await db.execute(
            select(RoomContribution.user_id, func.sum(RoomContribution.amount))
            .where(
                RoomContribution.room_id == room_id,
                RoomContribution.status == ContributionStatus.CONFIRMED,
            )
            .group_by(RoomContribution.user_id)
        )
        totals = {uid: to_money(total) for uid, total in rows.all()}
        return room, members, totals
