from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.actors import Actor
from ..core.errors import DomainError, ErrorKind
from ..core.ports import Notifier
from ..models.models import Notification, NotificationOutbox, utcnow

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    "deal.submitted": "Deal submitted for approval",
    "deal.approved": "Deal approved",
    "deal.rejected": "Deal rejected",
    "deal.edits_requested": "Edits requested on deal",
    "deal.override_requested": "Override requested",
    "deal.override_advanced": "Override moved to the next approval level",
    "deal.override_approved": "Override approved by top management",
    "deal.override_rejected": "Override rejected",
    "block.requested": "Unit block requested",
    "block.approved": "Unit block approved",
    "block.rejected": "Unit block rejected",
    "block.cancelled": "Unit block cancelled",
    "block.extended": "Unit block extended",
    "block.expired": "Unit block expired",
    "block.unblock_requested": "Unit unblock requested",
    "block.unblocked": "Unit unblocked",
    "reservation.submitted": "Reservation form awaiting approval",
    "reservation.approved": "Reservation form approved",
    "reservation.rejected": "Reservation form rejected",
    "contract.submitted": "Contract awaiting approval",
    "contract.advanced": "Contract awaiting top management approval",
    "contract.approved": "Contract approved",
    "contract.rejected": "Contract rejected",
    "contract.executed": "Contract executed",
    "thresholds.updated": "Acceptance thresholds updated",
}


def describe(event: str, payload: dict) -> tuple:
    title = EVENT_TITLES.get(event, event)
    subject = ", ".join(f"{key}={value}" for key, value in sorted(payload.items()) if value is not None)
    return title, f"{title} ({subject})" if subject else title


class DatabaseNotifier(Notifier):
    """Writes one notification row per addressed role and user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def publish(self, event: str, payload: dict, *, roles: Iterable[str] = (), user_ids: Iterable[int] = ()) -> None:
        title, message = describe(event, payload)
        try:
            for role in dict.fromkeys(roles):
                self.session.add(Notification(role=role, event=event, title=title, message=message, payload=payload))
            for user_id in dict.fromkeys(user_ids):
                self.session.add(Notification(user_id=user_id, event=event, title=title, message=message, payload=payload))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise DomainError(ErrorKind.UPSTREAM_UNAVAILABLE, "Notification store is unavailable") from exc


def notify(ctx, event: str, payload: dict, *, roles: Iterable[str] = (), user_ids: Iterable[int] = ()) -> bool:
    """Publish after a successful state write; a failed publish goes to the outbox instead of failing the caller."""
    roles = list(roles)
    user_ids = [user_id for user_id in user_ids if user_id]
    try:
        ctx.notifier.publish(event, payload, roles=roles, user_ids=user_ids)
    except DomainError as exc:
        if exc.kind is not ErrorKind.UPSTREAM_UNAVAILABLE:
            raise
        logger.warning("Notification %s failed; queued for retry: %s", event, exc.message)
        ctx.store.add(
            NotificationOutbox(
                event=event,
                payload=payload,
                roles=roles,
                user_ids=user_ids,
                attempts=1,
                last_error=exc.message,
            )
        )
        return False
    return True


def retry_outbox(ctx, limit: int = 100) -> List[int]:
    delivered: List[int] = []
    for item in ctx.store.find(NotificationOutbox, delivered_at=None)[:limit]:
        try:
            ctx.notifier.publish(item.event, item.payload, roles=item.roles, user_ids=item.user_ids)
        except DomainError as exc:
            if exc.kind is not ErrorKind.UPSTREAM_UNAVAILABLE:
                raise
            logger.warning("Outbox notification %s still failing", item.id)
            item.attempts += 1
            item.last_error = exc.message
            ctx.store.add(item)
            continue
        item.attempts += 1
        item.delivered_at = ctx.clock.now()
        ctx.store.add(item)
        delivered.append(item.id)
    return delivered


def list_for_actor(session: Session, actor: Actor, unread_only: bool = False) -> List[Notification]:
    query = session.query(Notification).filter(
        or_(Notification.user_id == actor.id, Notification.role == actor.role)
    )
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def mark_read(session: Session, actor: Actor, notification_id: int) -> Optional[Notification]:
    notification = session.get(Notification, notification_id)
    if notification is None or (notification.user_id != actor.id and notification.role != actor.role):
        return None
    if notification.read_at is None:
        notification.read_at = utcnow()
        session.commit()
        session.refresh(notification)
    return notification
