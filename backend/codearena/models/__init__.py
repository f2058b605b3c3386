from .user import User
from .match_setting import MatchSetting
from .challenge import Challenge, ChallengeMatchSetting, ChallengeParticipant
from .match import Match
from .submission import Submission
from .peer_review import PeerReviewAssignment, PeerReviewVote
from .score import SubmissionScoreBreakdown

__all__ = [
    "User",
    "MatchSetting",
    "Challenge",
    "ChallengeMatchSetting",
    "ChallengeParticipant",
    "Match",
    "Submission",
    "PeerReviewAssignment",
    "PeerReviewVote",
    "SubmissionScoreBreakdown",
]
