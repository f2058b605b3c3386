from datetime import datetime

from pydantic import BaseModel, Field

from ..enums import SubmissionStatus
from .challenge import ChallengePublic
from .match_setting import CaseSpec, MatchSettingPublic


class SubmissionRequest(BaseModel):
    code: str
    language: str | None = None
    is_automatic: bool = False


class RunRequest(BaseModel):
    code: str
    language: str | None = None
    custom_tests: list[CaseSpec] = Field(default_factory=list)


class SubmissionPublic(BaseModel):
    id: str
    match_id: str
    challenge_participant_id: str
    code: str
    language: str
    status: SubmissionStatus
    is_compiled: bool
    is_final: bool
    is_automatic_submission: bool
    public_test_results: list[dict] | None
    created_at: datetime

    class Config:
        from_attributes = True


class SubmissionResult(BaseModel):
    submission: SubmissionPublic
    public_summary: dict
    private_summary: dict
    public_test_results: list[dict]
    is_compiled: bool
    is_passed: bool


class RunResult(BaseModel):
    is_compiled: bool
    is_passed: bool
    summary: dict
    test_results: list[dict]


class MyMatchResponse(BaseModel):
    match_id: str
    challenge_id: str
    challenge_match_setting_id: str
    challenge: ChallengePublic
    match_setting: MatchSettingPublic
    final_submission: SubmissionPublic | None = None
