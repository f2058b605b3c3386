from datetime import datetime

from pydantic import BaseModel

from ..enums import EvaluationStatus, VoteType


class VoteRequest(BaseModel):
    vote: VoteType
    test_case_input: str | None = None
    expected_output: str | None = None


class VotePublic(BaseModel):
    id: str
    peer_review_assignment_id: str
    vote: VoteType
    test_case_input: str | None
    expected_output: str | None
    is_vote_correct: bool | None
    evaluation_status: EvaluationStatus | None
    updated_at: datetime

    class Config:
        from_attributes = True


class ReviewAssignmentPublic(BaseModel):
    id: str
    submission_id: str
    code: str
    language: str
    is_extra: bool
    vote: VoteType | None = None
    test_case_input: str | None = None
    expected_output: str | None = None


class MyReviewsResponse(BaseModel):
    challenge_id: str
    assignments: list[ReviewAssignmentPublic]


class ExitVote(BaseModel):
    submission_id: str
    vote: VoteType
    test_case_input: str | None = None
    expected_output: str | None = None


class PeerReviewExitRequest(BaseModel):
    challenge_id: str
    votes: list[ExitVote] = []


class PeerReviewExitResponse(BaseModel):
    votes_saved: int
    abstain_votes_created: int
