"""Endpoints driven by an external scheduler instead of a user."""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from ..config import AUTO_VALIDATE_AFTER_HOURS, MATCH_REMINDER_AFTER_HOURS, get_cron_secret
from ..db import get_session, get_sessionmaker
from ..exceptions import http_problem
from ..schemas import (
    DueMatchOut,
    ReminderMatchOut,
    ReminderPreviewOut,
    ReminderReportOut,
    SweepErrorOut,
    SweepPreviewOut,
    SweepReportOut,
)
from ..services.auto_validation import find_due_matches, run_sweep
from ..services.badges import BadgeChecker
from ..services.notifications import Notifier
from ..services.reminders import find_matches_needing_reminder, hours_left, send_reminders
from ..time_utils import coerce_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def require_cron_secret(authorization: str | None = Header(None)) -> None:
    expected = get_cron_secret()
    if expected is None:
        logger.error("CRON_SECRET is not configured; refusing scheduled request")
        raise http_problem(
            status_code=500,
            detail="cron secret not configured",
            code="cron_not_configured",
        )
    token = ""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    if not secrets.compare_digest(token.encode(), expected.encode()):
        raise http_problem(
            status_code=401,
            detail="invalid cron credentials",
            code="cron_unauthorized",
        )


def get_session_factory() -> sessionmaker:
    return get_sessionmaker()


# POST /api/v0/cron/auto-validate-matches
@router.post(
    "/auto-validate-matches",
    response_model=SweepReportOut,
    dependencies=[Depends(require_cron_secret)],
)
async def auto_validate_matches(
    limit: int | None = Query(None, ge=1, le=1000),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    report = await run_sweep(
        session_factory,
        notifier=Notifier(),
        badge_checker=BadgeChecker(),
        limit=limit,
    )
    return SweepReportOut(
        startedAt=report.started_at,
        found=report.found,
        resolved=report.resolved,
        skipped=report.skipped,
        errors=len(report.errors),
        errorDetails=[SweepErrorOut(matchId=e.match_id, error=e.error) for e in report.errors],
        aborted=report.aborted,
    )


# GET /api/v0/cron/auto-validate-matches
@router.get(
    "/auto-validate-matches",
    response_model=SweepPreviewOut,
    dependencies=[Depends(require_cron_secret)],
)
async def preview_auto_validation(
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
):
    due = await find_due_matches(session, utcnow(), limit)
    return SweepPreviewOut(
        count=len(due),
        matches=[
            DueMatchOut(
                id=m.id,
                player1Id=m.player1_id,
                player2Id=m.player2_id,
                autoValidateAt=coerce_utc(m.auto_validate_at),
            )
            for m in due
        ],
    )


# POST /api/v0/cron/match-reminders
@router.post(
    "/match-reminders",
    response_model=ReminderReportOut,
    dependencies=[Depends(require_cron_secret)],
)
async def send_match_reminders(
    limit: int | None = Query(None, ge=1, le=1000),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    report = await send_reminders(session_factory, notifier=Notifier(), limit=limit)
    return ReminderReportOut(
        startedAt=report.started_at,
        found=report.found,
        sent=report.sent,
        skipped=report.skipped,
        errors=len(report.errors),
        errorDetails=[SweepErrorOut(matchId=e.match_id, error=e.error) for e in report.errors],
    )


# GET /api/v0/cron/match-reminders
@router.get(
    "/match-reminders",
    response_model=ReminderPreviewOut,
    dependencies=[Depends(require_cron_secret)],
)
async def preview_match_reminders(
    limit: int = Query(100, ge=1, le=1000),
    session: AsyncSession = Depends(get_session),
):
    now = utcnow()
    pending = await find_matches_needing_reminder(session, now, limit)
    return ReminderPreviewOut(
        count=len(pending),
        reminderAfterHours=MATCH_REMINDER_AFTER_HOURS,
        autoValidateAfterHours=AUTO_VALIDATE_AFTER_HOURS,
        matches=[
            ReminderMatchOut(
                id=m.id,
                reportedBy=m.reported_by,
                score=m.score,
                autoValidateAt=coerce_utc(m.auto_validate_at),
                hoursLeft=hours_left(m.auto_validate_at, now),
            )
            for m in pending
        ],
    )
