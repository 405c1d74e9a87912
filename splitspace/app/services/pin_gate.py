"""
PIN authentication gate.

Lockout state machine guarding money-moving operations:

    attempts < max          wrong PIN -> attempts + 1
    attempts reaches max    -> locked until now + lockout window
    while locked            -> fail fast, no attempt consumed, no hash derived
    now >= locked_until     -> lock cleared lazily on next check, attempts = 0
    correct PIN             -> attempts = 0

The attempt counter is committed before any error is raised so a rejected
transfer still counts against the user.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.clock import utcnow
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import (
    AuthFailedError,
    AuthLockedError,
    LedgerValidationError,
    ResourceNotFoundError,
)
from splitspace.app.core.locking import account_locks, pin_key
from splitspace.app.core.security import (
    derive_pin_hash,
    generate_pin_salt,
    validate_pin_format,
    verify_pin_hash,
)
from splitspace.app.core.transactions import atomic
from splitspace.app.models.user import User
from splitspace.app.services.activity import ActivityAction
from splitspace.app.services.events import LedgerEvent, event_publisher

logger = logging.getLogger(__name__)


@dataclass
class PinCheckResult:
    success: bool
    attempts_remaining: Optional[int] = None
    locked_until: Optional[datetime] = None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


class PinGate:

    @staticmethod
    async def _load_user(db: AsyncSession, user_id: int) -> User:
        result = await db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if not user:
            raise ResourceNotFoundError("User", user_id)
        return user

    @staticmethod
    async def check_pin(db: AsyncSession, user_id: int, pin: Optional[str], now: Optional[datetime] = None) -> PinCheckResult:
        """
        Verify a PIN against the user's stored hash, applying lockout.

        Args:
            db: Database session
            user_id: User whose PIN is being checked
            pin: Plain PIN as entered
            now: Evaluation time (naive UTC), defaults to the current time

        Returns:
            PinCheckResult with attempts_remaining on failure, locked_until while locked

        Raises:
            LedgerValidationError: empty/malformed PIN or no PIN set up
            ResourceNotFoundError: unknown user
        """
        now = now or utcnow()
        events = []

        async with account_locks.hold(pin_key(user_id)):
            async with atomic(db):
                user = await PinGate._load_user(db, user_id)

                if user.pin_locked_until is not None:
                    if now < user.pin_locked_until:
                        return PinCheckResult(success=False, attempts_remaining=0, locked_until=user.pin_locked_until)
                    # Lock window elapsed
                    user.pin_locked_until = None
                    user.failed_pin_attempts = 0

                if not user.has_pin:
                    raise LedgerValidationError("PIN has not been set up")
                validate_pin_format(pin)

                if verify_pin_hash(pin, user.pin_salt, user.pin_hash):
                    user.failed_pin_attempts = 0
                    return PinCheckResult(success=True)

                user.failed_pin_attempts = (user.failed_pin_attempts or 0) + 1
                remaining = max(0, settings.pin_max_attempts - user.failed_pin_attempts)
                events.append(LedgerEvent(
                    user_id=user_id,
                    action=ActivityAction.PIN_FAILED,
                    resource_type="user",
                    resource_id=user_id,
                    metadata={"attempts_remaining": remaining},
                    timestamp=now,
                ))

                if user.failed_pin_attempts >= settings.pin_max_attempts:
                    user.pin_locked_until = now + timedelta(minutes=settings.pin_lockout_minutes)
                    logger.warning("PIN locked for user %s until %s", user_id, user.pin_locked_until)
                    events.append(LedgerEvent(
                        user_id=user_id,
                        action=ActivityAction.PIN_LOCKED,
                        resource_type="user",
                        resource_id=user_id,
                        metadata={"locked_until": user.pin_locked_until},
                        timestamp=now,
                    ))
                    result = PinCheckResult(success=False, attempts_remaining=0, locked_until=user.pin_locked_until)
                else:
                    result = PinCheckResult(success=False, attempts_remaining=remaining)

            await event_publisher.emit(db, *events)
        return result

    @staticmethod
    async def require_pin(db: AsyncSession, user_id: int, pin: Optional[str], now: Optional[datetime] = None) -> None:
        """
        Gate for money-moving callers.

        Raises:
            AuthFailedError: missing or wrong PIN (with attempts_remaining)
            AuthLockedError: lockout in force (with locked_until)
        """
        now = now or utcnow()
        if not pin:
            raise AuthFailedError("PIN is required")

        result = await PinGate.check_pin(db, user_id, pin, now)
        if result.success:
            return
        if result.locked:
            raise AuthLockedError(result.locked_until, now)
        raise AuthFailedError(attempts_remaining=result.attempts_remaining)

    @staticmethod
    async def set_pin(
        db: AsyncSession,
        user_id: int,
        pin: str,
        current_pin: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> User:
        """
        Set up or change a user's PIN. A fresh salt is generated every time.

        Changing an existing PIN requires the current one, checked through
        the same lockout gate.

        Raises:
            LedgerValidationError: malformed new PIN
            AuthFailedError / AuthLockedError: current PIN rejected
        """
        now = now or utcnow()
        validate_pin_format(pin)

        result = await db.execute(select(User).where(User.id == user_id))
        existing = result.scalar_one_or_none()
        if not existing:
            raise ResourceNotFoundError("User", user_id)

        changing = existing.has_pin
        if changing:
            await PinGate.require_pin(db, user_id, current_pin, now)

        async with account_locks.hold(pin_key(user_id)):
            async with atomic(db):
                user = await PinGate._load_user(db, user_id)
                salt = generate_pin_salt()
                user.pin_salt = salt
                user.pin_hash = derive_pin_hash(pin, salt)
                user.pin_updated_at = now
                user.failed_pin_attempts = 0
                user.pin_locked_until = None

            await event_publisher.emit(db, LedgerEvent(
                user_id=user_id,
                action=ActivityAction.PIN_CHANGED if changing else ActivityAction.PIN_SET,
                resource_type="user",
                resource_id=user_id,
                timestamp=now,
            ))

        logger.info("PIN %s for user %s", "changed" if changing else "set", user_id)
        return user
