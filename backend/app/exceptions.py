from enum import Enum

from fastapi import HTTPException
from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code


class PlayerNotFound(DomainException):
    def __init__(self, player_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Player not found",
            detail=f"player '{player_id}' not found",
            code="player_not_found",
        )


class ClubAdminRequired(DomainException):
    def __init__(self) -> None:
        super().__init__(
            status_code=403,
            title="Club admin required",
            detail="only an administrator of this match's club can do this",
            code="club_admin_required",
        )


class MatchErrorKind(str, Enum):
    """Closed set of failures the validation workflow can report."""

    NOT_FOUND = "not_found"
    ALREADY_VALIDATED = "already_validated"
    NOT_PARTICIPANT = "not_participant"
    IS_REPORTER = "is_reporter"
    ALREADY_CONTESTED = "already_contested"
    CONTEST_WINDOW_EXPIRED = "contest_window_expired"
    CONTEST_QUOTA_EXCEEDED = "contest_quota_exceeded"
    NOT_CONTESTED = "not_contested"


class MatchWorkflowError(DomainException):
    kind: MatchErrorKind

    def __init__(
        self, match_id: str, *, status_code: int, title: str, detail: str
    ) -> None:
        super().__init__(
            status_code=status_code,
            title=title,
            detail=detail,
            code=f"match_{self.kind.value}",
        )
        self.match_id = match_id


class MatchNotFound(MatchWorkflowError):
    kind = MatchErrorKind.NOT_FOUND

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
        )


class MatchAlreadyValidated(MatchWorkflowError):
    kind = MatchErrorKind.ALREADY_VALIDATED

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=409,
            title="Match already validated",
            detail=f"match '{match_id}' has already been validated",
        )


class NotMatchParticipant(MatchWorkflowError):
    kind = MatchErrorKind.NOT_PARTICIPANT

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=403,
            title="Not a participant",
            detail="only the players of this match can perform this action",
        )


class ReporterCannotRespond(MatchWorkflowError):
    kind = MatchErrorKind.IS_REPORTER

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=403,
            title="Reporter cannot respond",
            detail="the player who reported a match cannot confirm or reject it",
        )


class MatchAlreadyContested(MatchWorkflowError):
    kind = MatchErrorKind.ALREADY_CONTESTED

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=409,
            title="Match already contested",
            detail=f"match '{match_id}' is already under review",
        )


class ContestWindowExpired(MatchWorkflowError):
    kind = MatchErrorKind.CONTEST_WINDOW_EXPIRED

    def __init__(self, match_id: str, window_days: int) -> None:
        super().__init__(
            match_id,
            status_code=409,
            title="Contest window expired",
            detail=(
                f"matches can only be contested within {window_days} days "
                "of validation"
            ),
        )
        self.window_days = window_days


class ContestQuotaExceeded(MatchWorkflowError):
    kind = MatchErrorKind.CONTEST_QUOTA_EXCEEDED

    def __init__(self, match_id: str, limit: int) -> None:
        super().__init__(
            match_id,
            status_code=429,
            title="Contest limit reached",
            detail=f"you can contest at most {limit} matches per month",
        )
        self.limit = limit


class MatchNotContested(MatchWorkflowError):
    kind = MatchErrorKind.NOT_CONTESTED

    def __init__(self, match_id: str) -> None:
        super().__init__(
            match_id,
            status_code=409,
            title="Match not contested",
            detail=f"match '{match_id}' has no open contest to resolve",
        )


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc
