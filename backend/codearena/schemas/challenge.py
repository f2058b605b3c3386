from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from ..enums import ChallengeStatus, ScoringStatus


class ChallengeCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    start_datetime: datetime
    end_datetime: datetime
    duration: int = Field(default=60, ge=1)
    duration_peer_review: int = Field(default=30, ge=1)
    allowed_number_of_review: int = Field(default=2, ge=2)
    status: ChallengeStatus = ChallengeStatus.PRIVATE
    match_setting_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_window(self) -> "ChallengeCreate":
        if self.status not in (ChallengeStatus.DRAFT, ChallengeStatus.PRIVATE, ChallengeStatus.PUBLIC):
            raise ValueError("A new challenge must be draft, private or public.")
        if self.end_datetime <= self.start_datetime:
            raise ValueError("The end time must be after the start time.")
        if (self.end_datetime - self.start_datetime).total_seconds() < self.duration * 60:
            raise ValueError("The time window must be at least as long as the duration.")
        return self


class ChallengeUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    duration: int | None = Field(default=None, ge=1)
    duration_peer_review: int | None = Field(default=None, ge=1)
    allowed_number_of_review: int | None = Field(default=None, ge=2)
    match_setting_ids: list[str] | None = None


class ChallengePublic(BaseModel):
    id: str
    title: str
    description: str
    creator_id: str | None
    start_datetime: datetime
    end_datetime: datetime
    duration: int
    duration_peer_review: int
    allowed_number_of_review: int
    status: ChallengeStatus
    scoring_status: ScoringStatus
    start_coding_phase_at: datetime | None
    end_coding_phase_at: datetime | None
    start_peer_review_at: datetime | None
    end_peer_review_at: datetime | None
    coding_phase_finalization_completed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class ParticipantPublic(BaseModel):
    id: str
    student_id: str
    username: str
    joined_at: datetime


class JoinResponse(BaseModel):
    participant_id: str
    already_joined: bool = False


class ExpectedReviewsUpdate(BaseModel):
    expected_reviews_per_submission: int


class PeerReviewAssignRequest(BaseModel):
    expected_reviews_per_submission: int | None = None
    reassign: bool = False


class MatchEntry(BaseModel):
    id: str
    challenge_participant_id: str
    student: dict


class MatchGroup(BaseModel):
    challenge_match_setting_id: str
    match_setting: dict
    matches: list[MatchEntry]


class MatchesOverview(BaseModel):
    challenge: ChallengePublic
    assignments: list[MatchGroup]
    peer_review_assignments: list[dict]
    pending_final_count: int
    in_flight_submissions_count: int
    results_ready: bool
    peer_review_ready: bool
    finalization: dict


class ScoreBreakdownPublic(BaseModel):
    submission_id: str
    challenge_participant_id: str
    implementation_score: float
    code_review_score: float
    total_score: float
    stats: dict | None

    class Config:
        from_attributes = True
