from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..enums import MatchSettingStatus


class CaseSpec(BaseModel):
    input: Any
    output: Any


class MatchSettingCreate(BaseModel):
    problem_title: str = Field(min_length=1, max_length=200)
    problem_description: str = ""
    reference_solution: str | None = None
    starter_code: str | None = None
    public_tests: list[CaseSpec] = Field(default_factory=list)
    private_tests: list[CaseSpec] = Field(default_factory=list)


class MatchSettingUpdate(BaseModel):
    problem_title: str | None = Field(default=None, min_length=1, max_length=200)
    problem_description: str | None = None
    reference_solution: str | None = None
    starter_code: str | None = None
    public_tests: list[CaseSpec] | None = None
    private_tests: list[CaseSpec] | None = None


class MatchSettingPublic(BaseModel):
    """Problem as shown to students: no reference solution and no private tests."""

    id: str
    problem_title: str
    problem_description: str
    starter_code: str | None
    public_tests: list[dict]
    status: MatchSettingStatus

    class Config:
        from_attributes = True


class MatchSettingDetail(MatchSettingPublic):
    reference_solution: str | None
    private_tests: list[dict]
    creator_id: str | None
    created_at: datetime
    updated_at: datetime
