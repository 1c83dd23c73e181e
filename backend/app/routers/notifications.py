"""In-app notification inbox for match events."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..db_errors import is_missing_table_error, safe_rollback
from ..exceptions import http_problem
from ..models import Notification, Player
from ..schemas import NotificationListOut, NotificationOut
from ..time_utils import coerce_utc, utcnow
from .auth import get_current_player

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _unread(player_id: str):
    return (Notification.player_id == player_id, Notification.read_at.is_(None))


def _notification_out(row: Notification) -> NotificationOut:
    return NotificationOut(
        id=row.id,
        type=row.type,
        payload=row.payload or {},
        createdAt=coerce_utc(row.created_at),
        readAt=coerce_utc(row.read_at),
    )


# GET /api/v0/notifications
@router.get("", response_model=NotificationListOut)
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    filters = _unread(player.id) if unread_only else (Notification.player_id == player.id,)
    try:
        unread_count = (
            await session.execute(
                select(func.count(Notification.id)).where(*_unread(player.id))
            )
        ).scalar_one()
        rows = (
            await session.execute(
                select(Notification)
                .where(*filters)
                .order_by(Notification.created_at.desc(), Notification.id)
                .offset(offset)
                .limit(limit)
            )
        ).scalars().all()
    except SQLAlchemyError as exc:
        await safe_rollback(session)
        if not is_missing_table_error(exc, "notification"):
            raise
        rows, unread_count = [], 0

    return NotificationListOut(
        items=[_notification_out(row) for row in rows],
        unreadCount=unread_count,
    )


# POST /api/v0/notifications/{notification_id}/read
@router.post("/{notification_id}/read", status_code=204)
async def mark_notification_read(
    notification_id: str,
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    # Someone else's notification is reported as missing.
    result = await session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.player_id == player.id)
        .values(read_at=func.coalesce(Notification.read_at, utcnow()))
    )
    if result.rowcount == 0:
        await safe_rollback(session)
        raise http_problem(
            status_code=404,
            detail="notification not found",
            code="notification_not_found",
        )
    await session.commit()
    return Response(status_code=204)


# POST /api/v0/notifications/read-all
@router.post("/read-all", status_code=204)
async def mark_all_notifications_read(
    session: AsyncSession = Depends(get_session),
    player: Player = Depends(get_current_player),
):
    try:
        await session.execute(
            update(Notification).where(*_unread(player.id)).values(read_at=utcnow())
        )
        await session.commit()
    except SQLAlchemyError as exc:
        await safe_rollback(session)
        if not is_missing_table_error(exc, "notification"):
            raise
    return Response(status_code=204)
