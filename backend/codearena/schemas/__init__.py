from .auth import RegisterRequest, LoginRequest, Token
from .user import UserPublic
from .match_setting import MatchSettingCreate, MatchSettingUpdate, MatchSettingPublic, MatchSettingDetail
from .challenge import (
    ChallengeCreate,
    ChallengeUpdate,
    ChallengePublic,
    ParticipantPublic,
    JoinResponse,
    MatchesOverview,
    ScoreBreakdownPublic,
)
from .submission import (
    SubmissionRequest,
    RunRequest,
    SubmissionPublic,
    SubmissionResult,
    RunResult,
    MyMatchResponse,
)
from .peer_review import VoteRequest, VotePublic, MyReviewsResponse, PeerReviewExitRequest, PeerReviewExitResponse

__all__ = [
    "RegisterRequest",
    "LoginRequest",
    "Token",
    "UserPublic",
    "MatchSettingCreate",
    "MatchSettingUpdate",
    "MatchSettingPublic",
    "MatchSettingDetail",
    "ChallengeCreate",
    "ChallengeUpdate",
    "ChallengePublic",
    "ParticipantPublic",
    "JoinResponse",
    "MatchesOverview",
    "ScoreBreakdownPublic",
    "SubmissionRequest",
    "RunRequest",
    "SubmissionPublic",
    "SubmissionResult",
    "RunResult",
    "MyMatchResponse",
    "VoteRequest",
    "VotePublic",
    "MyReviewsResponse",
    "PeerReviewExitRequest",
    "PeerReviewExitResponse",
]
