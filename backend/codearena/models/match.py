from datetime import datetime
from uuid import uuid4

from sqlmodel import Field, SQLModel

from ..clock import utcnow


class Match(SQLModel, table=True):
    """One participant solving one problem of a challenge."""

    __tablename__ = "matches"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    challenge_id: str = Field(foreign_key="challenges.id", index=True)
    challenge_match_setting_id: str = Field(foreign_key="challenge_match_settings.id", index=True)
    challenge_participant_id: str = Field(
        foreign_key="challenge_participants.id",
        unique=True,
        index=True,
    )
    created_at: datetime = Field(default_factory=utcnow)
