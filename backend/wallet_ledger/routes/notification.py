from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from wallet_ledger.database import get_db
from wallet_ledger.schemas.schemas import NotificationResponse
from wallet_ledger.services.notification_service import NotificationService

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("/partner/{partner_id}", response_model=list[NotificationResponse])
def get_notifications(
    partner_id: int,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """
    Lists a partner's notifications, newest first.
    """
    return NotificationService.get_notifications(db, partner_id, unread_only=unread_only, limit=limit)


@router.get("/partner/{partner_id}/unread-count")
def get_unread_count(partner_id: int, db: Session = Depends(get_db)):
    return {"partner_id": partner_id, "unread": NotificationService.get_unread_count(db, partner_id)}


@router.post("/partner/{partner_id}/read-all")
def mark_all_as_read(partner_id: int, db: Session = Depends(get_db)):
    count = NotificationService.mark_all_as_read(db, partner_id)
    return {"success": True, "count": count}


@router.post("/{notification_id}/read")
def mark_as_read(notification_id: int, db: Session = Depends(get_db)):
    NotificationService.mark_as_read(db, notification_id)
    return {"success": True}
