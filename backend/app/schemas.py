from typing import Any, Dict, List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, ConfigDict

from .time_utils import require_utc

MatchFormatLiteral = Literal["one_set", "two_sets", "three_sets", "super_tiebreak"]


class MatchReportIn(BaseModel):
    """Schema for reporting a singles match against an opponent."""

    opponentId: str = Field(..., min_length=1)
    winnerId: str = Field(..., min_length=1)
    score: str = Field(..., min_length=3, max_length=40)
    matchFormat: Optional[MatchFormatLiteral] = None
    playedAt: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("playedAt")
    @classmethod
    def _require_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return require_utc(value, field_name="playedAt")


class MatchIdOut(BaseModel):
    """Schema returned after reporting a match."""

    id: str
    autoValidateAt: datetime


class MatchOut(BaseModel):
    """Detailed match information returned by the API."""

    id: str
    clubId: Optional[str] = None
    player1Id: str
    player2Id: str
    winnerId: str
    score: str
    matchFormat: str
    playedAt: datetime
    status: str
    reportedBy: str
    validated: bool
    validatedAt: Optional[datetime] = None
    validatedBy: Optional[str] = None
    autoValidated: bool
    autoValidateAt: datetime
    contested: bool
    contestedBy: Optional[str] = None
    contestedAt: Optional[datetime] = None
    contestReason: Optional[str] = None
    contestResolution: Optional[str] = None
    contestResolvedAt: Optional[datetime] = None
    player1EloBefore: int
    player1EloAfter: int
    player2EloBefore: int
    player2EloAfter: int
    createdAt: Optional[datetime] = None


class RatingChangeOut(BaseModel):
    playerId: str
    eloBefore: int
    eloAfter: int
    delta: int
    won: bool


class ResolvedMatchOut(BaseModel):
    """Result of confirming a match."""

    matchId: str
    winnerId: str
    validatedAt: datetime
    validatedBy: Optional[str] = None
    autoValidated: bool
    changes: List[RatingChangeOut]


class RejectedMatchOut(BaseModel):
    matchId: str
    rejectedBy: str
    reportedBy: str


class ContestIn(BaseModel):
    reason: str = Field(..., min_length=10, max_length=1000)

    model_config = ConfigDict(extra="forbid")

    @field_validator("reason", mode="before")
    @classmethod
    def _strip_reason(cls, value: str) -> str:
        if not isinstance(value, str):
            raise TypeError("reason must be a string")
        return value.strip()


class ContestReceiptOut(BaseModel):
    matchId: str
    contestedBy: str
    contestedAt: datetime
    reason: str
    adminsNotified: int
    contestsRemaining: int


class ContestStatusOut(BaseModel):
    matchId: str
    validated: bool
    validatedAt: Optional[datetime] = None
    contested: bool
    contestedBy: Optional[str] = None
    contestedAt: Optional[datetime] = None
    contestReason: Optional[str] = None
    contestResolution: Optional[str] = None
    contestResolvedAt: Optional[datetime] = None
    canContest: bool
    blockedBy: Optional[str] = None
    windowEndsAt: Optional[datetime] = None
    contestsUsedThisMonth: int
    monthlyLimit: int


class ContestResolutionIn(BaseModel):
    resolution: Literal["upheld", "rejected", "modified"]

    model_config = ConfigDict(extra="forbid")


class ModifierDetailOut(BaseModel):
    type: str
    value: float
    description: str


class SideBreakdownOut(BaseModel):
    playerId: str
    eloBefore: int
    eloAfter: int
    delta: int
    kFactor: Optional[int] = None
    kFactorLabel: Optional[str] = None
    expectedScore: Optional[float] = None
    totalModifier: float = 1.0
    details: List[ModifierDetailOut] = Field(default_factory=list)


class EloBreakdownOut(BaseModel):
    """Rating breakdown frozen on the match when it was reported."""

    matchId: str
    status: str
    matchFormat: Optional[str] = None
    winner: SideBreakdownOut
    loser: SideBreakdownOut


class PlayerOut(BaseModel):
    id: str
    name: str
    clubId: Optional[str] = None
    isAdmin: bool = False
    currentElo: int
    bestElo: int
    matchesPlayed: int
    wins: int
    losses: int
    lastMatchAt: Optional[datetime] = None
    kFactor: int
    kFactorLabel: str


class RatingHistoryEntryOut(BaseModel):
    matchId: str
    eloAfter: int
    delta: int
    reason: Literal["match_win", "match_loss"]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    recordedAt: datetime


class RatingHistoryOut(BaseModel):
    playerId: str
    items: List[RatingHistoryEntryOut]
    limit: int
    offset: int


class NotificationOut(BaseModel):
    id: str
    type: str
    payload: Dict[str, Any]
    createdAt: datetime
    readAt: Optional[datetime] = None


class NotificationListOut(BaseModel):
    items: List[NotificationOut]
    unreadCount: int


class SweepErrorOut(BaseModel):
    matchId: str
    error: str


class SweepReportOut(BaseModel):
    startedAt: datetime
    found: int
    resolved: int
    skipped: int
    errors: int
    errorDetails: List[SweepErrorOut] = Field(default_factory=list)
    aborted: bool = False


class DueMatchOut(BaseModel):
    id: str
    player1Id: str
    player2Id: str
    autoValidateAt: datetime


class SweepPreviewOut(BaseModel):
    count: int
    matches: List[DueMatchOut]


class ReminderReportOut(BaseModel):
    startedAt: datetime
    found: int
    sent: int
    skipped: int
    errors: int
    errorDetails: List[SweepErrorOut] = Field(default_factory=list)


class ReminderMatchOut(BaseModel):
    id: str
    reportedBy: str
    score: str
    autoValidateAt: datetime
    hoursLeft: int


class ReminderPreviewOut(BaseModel):
    count: int
    reminderAfterHours: float
    autoValidateAfterHours: float
    matches: List[ReminderMatchOut]


class BadgeOut(BaseModel):
    id: str
    name: str
    icon: Optional[str] = None
    category: str
    description: Optional[str] = None
    earnedAt: Optional[datetime] = None
