from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, Index, JSON, text
from sqlmodel import Field, SQLModel

from ..clock import utcnow
from ..enums import SubmissionStatus


class Submission(SQLModel, table=True):
    __tablename__ = "submissions"
    __table_args__ = (
        # at most one final submission per match
        Index(
            "uq_submissions_final_per_match",
            "match_id",
            unique=True,
            sqlite_where=text("is_final = 1"),
            postgresql_where=text("is_final"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    match_id: str = Field(foreign_key="matches.id", index=True)
    challenge_participant_id: str = Field(foreign_key="challenge_participants.id", index=True)
    code: str = Field(default="")
    language: str = Field(default="cpp")
    status: SubmissionStatus = Field(default=SubmissionStatus.WRONG)
    is_compiled: bool = Field(default=False)
    is_final: bool = Field(default=False)
    is_automatic_submission: bool = Field(default=False)
    public_test_results: list | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    private_test_results: list | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
