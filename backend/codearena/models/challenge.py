from datetime import datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from ..clock import utcnow
from ..enums import ChallengeStatus, ScoringStatus


class Challenge(SQLModel, table=True):
    __tablename__ = "challenges"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    description: str = Field(default="")
    creator_id: str | None = Field(default=None, foreign_key="users.id")
    start_datetime: datetime
    end_datetime: datetime
    duration: int = Field(default=60)
    duration_peer_review: int = Field(default=30)
    allowed_number_of_review: int = Field(default=2)
    status: ChallengeStatus = Field(default=ChallengeStatus.PRIVATE, index=True)
    scoring_status: ScoringStatus = Field(default=ScoringStatus.PENDING)
    start_coding_phase_at: datetime | None = Field(default=None)
    end_coding_phase_at: datetime | None = Field(default=None)
    start_peer_review_at: datetime | None = Field(default=None)
    end_peer_review_at: datetime | None = Field(default=None)
    coding_phase_finalization_completed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ChallengeMatchSetting(SQLModel, table=True):
    """
    Join row between a challenge and one of its problems; matches point at
    this row rather than at the problem directly.
    """

    __tablename__ = "challenge_match_settings"
    __table_args__ = (UniqueConstraint("challenge_id", "match_setting_id", name="uq_challenge_match_setting"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    match_setting_id: str = Field(foreign_key="match_settings.id", index=True)
    position: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class ChallengeParticipant(SQLModel, table=True):
    __tablename__ = "challenge_participants"
    __table_args__ = (UniqueConstraint("challenge_id", "student_id", name="uq_challenge_participant"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    student_id: str = Field(foreign_key="users.id", index=True)
    joined_at: datetime = Field(default_factory=utcnow)
