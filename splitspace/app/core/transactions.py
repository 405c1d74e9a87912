"""
Atomic transaction helper for financial operations.

Balance change, ledger entry and domain row update commit together or not at
all. Storage errors are translated into the engine's error taxonomy.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from splitspace.app.core.exceptions import ConcurrencyConflictError, InternalLedgerError

logger = logging.getLogger(__name__)

# PostgreSQL deadlock_detected / serialization_failure / lock_not_available
RETRYABLE_SQLSTATES = {"40P01", "40001", "55P03"}


def _sqlstate(exc: DBAPIError) -> str:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None) or ""


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Commit on success, roll back on any error.

    Raises:
        ConcurrencyConflictError: deadlock, serialization failure or a lost
            race on a unique idempotency key
        InternalLedgerError: any other storage failure
    """
    try:
        yield db
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.warning("Integrity conflict, transaction rolled back: %s", exc.orig)
        raise ConcurrencyConflictError("Conflicting concurrent request, please retry")
    except DBAPIError as exc:
        await db.rollback()
        if _sqlstate(exc) in RETRYABLE_SQLSTATES:
            logger.warning("Retryable database conflict (%s), rolled back", _sqlstate(exc))
            raise ConcurrencyConflictError()
        logger.error("Database error, transaction rolled back: %s", exc)
        raise InternalLedgerError()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Storage error, transaction rolled back: %s", exc)
        raise InternalLedgerError()
    except BaseException:
        await db.rollback()
        raise
