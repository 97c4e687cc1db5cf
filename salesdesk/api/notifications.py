from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..api.dependencies import get_db
from ..auth.jwt import get_current_actor
from ..core.actors import Actor
from ..models.models import Notification
from ..schemas.schemas import NotificationRead
from ..services.notifications import list_for_actor, mark_read

router = APIRouter()


@router.get("/", response_model=List[NotificationRead])
def list_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[Notification]:
    return list_for_actor(db, actor, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Notification:
    notification = mark_read(db, actor, notification_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
