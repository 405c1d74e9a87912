"""
Outward ledger events.

Each completed mutation yields one LedgerEvent per affected user. Emitting is
fire-and-forget from the caller's point of view:

1. an ActivityLog row is written (queryable trail)
2. the event is XADDed to the Redis stream behind a circuit breaker
3. if the publish fails, the event is parked in the dead letter queue

Nothing here raises into the financial operation that produced the event.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import splitspace.app.core.redis_client as redis_client_module
from splitspace.app.core.clock import utcnow
from splitspace.app.core.config import settings
from splitspace.app.core.exceptions import ResourceNotFoundError
from splitspace.app.core.observability import current_correlation_id
from splitspace.app.core.reliability import CircuitBreaker, CircuitOpenError, event_stream_breaker
from splitspace.app.models.dlq import DeadLetterQueue, DLQStatus
from splitspace.app.services.activity import build_activity

logger = logging.getLogger(__name__)

PUBLISH_ERRORS = (RedisError, OSError, CircuitOpenError)


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if hasattr(value, "value"):  # enums
        return value.value
    return value


@dataclass
class LedgerEvent:
    user_id: Optional[int]
    action: str
    resource_type: str
    resource_id: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": str(self.resource_id) if self.resource_id is not None else None,
            "metadata": _json_safe(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LedgerEvent":
        return cls(
            user_id=payload.get("user_id"),
            action=payload["action"],
            resource_type=payload.get("resource_type"),
            resource_id=payload.get("resource_id"),
            metadata=payload.get("metadata") or {},
            timestamp=datetime.fromisoformat(payload["timestamp"]),
        )

    def to_stream_fields(self) -> Dict[str, str]:
        """Flat string map for XADD."""
        payload = self.to_payload()
        return {
            "user_id": "" if payload["user_id"] is None else str(payload["user_id"]),
            "action": payload["action"],
            "resource_type": payload["resource_type"] or "",
            "resource_id": payload["resource_id"] or "",
            "metadata": json.dumps(payload["metadata"], sort_keys=True),
            "timestamp": payload["timestamp"],
        }


class EventPublisher:
    """Publishes LedgerEvents after the owning transaction has committed."""

    def __init__(self, breaker: CircuitBreaker = event_stream_breaker, stream_key: Optional[str] = None):
        self.breaker = breaker
        self.stream_key = stream_key or settings.event_stream_key

    async def publish(self, event: LedgerEvent):
        """XADD one event. Raises on failure."""
        redis = redis_client_module.redis_client
        await self.breaker.call(
            redis.xadd,
            self.stream_key,
            event.to_stream_fields(),
            maxlen=settings.event_stream_maxlen,
            approximate=True,
        )

    async def emit(self, db: AsyncSession, *events: LedgerEvent) -> int:
        """
        Record and publish events. Never raises.

        Returns:
            Number of events that reached the stream
        """
        correlation_id = current_correlation_id()
        published = 0

        for event in events:
            if correlation_id and "correlation_id" not in event.metadata:
                event.metadata["correlation_id"] = correlation_id

            db.add(build_activity(
                action=event.action.upper(),
                user_id=event.user_id,
                resource_type=event.resource_type,
                resource_id=event.resource_id,
                metadata=_json_safe(event.metadata),
                timestamp=event.timestamp,
            ))

            try:
                await self.publish(event)
                published += 1
            except PUBLISH_ERRORS as exc:
                logger.warning("Event %s for user %s not published: %s", event.action, event.user_id, exc)
                db.add(DeadLetterQueue(
                    task_name=f"publish_event:{event.action}",
                    error_message=str(exc) or type(exc).__name__,
                    payload=event.to_payload(),
                ))

        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Could not record %d activity rows: %s", len(events), exc)

        return published

    async def retry_dead_letter(self, db: AsyncSession, item_id: int) -> DeadLetterQueue:
        """
        Republish a parked event.

        Raises:
            ResourceNotFoundError: unknown DLQ item
        """
        result = await db.execute(select(DeadLetterQueue).where(DeadLetterQueue.id == item_id))
        item = result.scalar_one_or_none()
        if not item:
            raise ResourceNotFoundError("DLQ item", item_id)
        if item.status == DLQStatus.PROCESSED:
            return item

        item.retry_count = (item.retry_count or 0) + 1
        item.last_retry_at = utcnow()
        try:
            await self.publish(LedgerEvent.from_payload(item.payload))
            item.status = DLQStatus.PROCESSED
            logger.info("DLQ item %s republished", item.id)
        except PUBLISH_ERRORS as exc:
            item.status = DLQStatus.FAILED
            item.error_message = str(exc) or type(exc).__name__
            logger.warning("DLQ item %s retry failed: %s", item.id, exc)

        await db.commit()
        return item


event_publisher = EventPublisher()
