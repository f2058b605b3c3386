from enum import Enum


class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class ChallengeStatus(str, Enum):
    DRAFT = "draft"
    PRIVATE = "private"
    PUBLIC = "public"
    ASSIGNED = "assigned"
    STARTED_CODING_PHASE = "started_coding_phase"
    ENDED_CODING_PHASE = "ended_coding_phase"
    STARTED_PEER_REVIEW = "started_peer_review"
    ENDED_PEER_REVIEW = "ended_peer_review"


class ScoringStatus(str, Enum):
    PENDING = "pending"
    COMPUTING = "computing"
    COMPLETED = "completed"


class MatchSettingStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"


class SubmissionStatus(str, Enum):
    WRONG = "wrong"
    IMPROVABLE = "improvable"
    PROBABLY_CORRECT = "probably_correct"


class VoteType(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    ABSTAIN = "abstain"


class EvaluationStatus(str, Enum):
    BUG_PROVEN = "bug_proven"
    NO_BUG = "no_bug"
    INVALID_OUTPUT = "invalid_output"
    COMPILE_ERROR = "compile_error"
    RUNTIME_ERROR = "runtime_error"
    TIMEOUT = "timeout"


class Outcome(str, Enum):
    OK = "ok"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    MATCH_NOT_FOUND = "match_not_found"
    ASSIGNMENT_NOT_FOUND = "assignment_not_found"
    SUBMISSION_NOT_FOUND = "submission_not_found"
    INVALID_STATUS = "invalid_status"
    TOO_EARLY = "too_early"
    NO_MATCH_SETTINGS = "no_match_settings"
    NO_PARTICIPANTS = "no_participants"
    NO_MATCHES = "no_matches"
    ALREADY_ASSIGNED = "already_assigned"
    ALREADY_STARTED = "already_started"
    ALREADY_ENDED = "already_ended"
    ALREADY_FINALIZED = "already_finalized"
    ALREADY_JOINED = "already_joined"
    CHALLENGE_PRIVATE = "challenge_private"
    FINALIZATION_PENDING = "finalization_pending"
    NO_ASSIGNMENTS = "no_assignments"
    INSUFFICIENT_VALID_SUBMISSIONS = "insufficient_valid_submissions"
    INVALID_EXPECTED_REVIEWS = "invalid_expected_reviews"
    PEER_REVIEW_NOT_ENDED = "peer_review_not_ended"
    SCORING_IN_PROGRESS = "scoring_in_progress"
    UPDATE_FAILED = "update_failed"
    NOT_ALLOWED = "not_allowed"
    INVALID_INPUT = "invalid_input"
    PHASE_CLOSED = "phase_closed"
    PARTICIPANT_NOT_FOUND = "participant_not_found"
