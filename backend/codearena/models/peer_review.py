from datetime import datetime
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from ..clock import utcnow
from ..enums import EvaluationStatus, VoteType


class PeerReviewAssignment(SQLModel, table=True):
    __tablename__ = "peer_review_assignments"
    __table_args__ = (UniqueConstraint("submission_id", "reviewer_id", name="uq_peer_review_assignment"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    submission_id: str = Field(foreign_key="submissions.id", index=True)
    reviewer_id: str = Field(foreign_key="challenge_participants.id", index=True)
    is_extra: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class PeerReviewVote(SQLModel, table=True):
    __tablename__ = "peer_review_votes"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    peer_review_assignment_id: str = Field(
        foreign_key="peer_review_assignments.id",
        unique=True,
        index=True,
    )
    vote: VoteType
    test_case_input: str | None = Field(default=None)
    expected_output: str | None = Field(default=None)
    reference_output: str | None = Field(default=None)
    actual_output: str | None = Field(default=None)
    is_expected_output_correct: bool | None = Field(default=None)
    is_bug_proven: bool | None = Field(default=None)
    is_vote_correct: bool | None = Field(default=None)
    evaluation_status: EvaluationStatus | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
