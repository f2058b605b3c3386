from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

from ..clock import utcnow


class SubmissionScoreBreakdown(SQLModel, table=True):
    __tablename__ = "submission_score_breakdowns"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    submission_id: str = Field(foreign_key="submissions.id", unique=True, index=True)
    challenge_participant_id: str = Field(foreign_key="challenge_participants.id", index=True)
    implementation_score: float = Field(default=0.0)
    code_review_score: float = Field(default=0.0)
    total_score: float = Field(default=0.0)
    stats: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
