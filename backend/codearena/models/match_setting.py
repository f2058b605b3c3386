from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

from ..clock import utcnow
from ..enums import MatchSettingStatus


class MatchSetting(SQLModel, table=True):
    """A coding problem with its reference solution and test suites."""

    __tablename__ = "match_settings"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    problem_title: str
    problem_description: str = Field(default="")
    reference_solution: str | None = Field(default=None)
    starter_code: str | None = Field(default=None)
    public_tests: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    private_tests: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    status: MatchSettingStatus = Field(default=MatchSettingStatus.DRAFT)
    creator_id: str | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
