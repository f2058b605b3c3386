from fastapi import HTTPException, status

from ..enums import Outcome
from ..services.results import OperationResult

NOT_FOUND = {
    Outcome.CHALLENGE_NOT_FOUND,
    Outcome.MATCH_NOT_FOUND,
    Outcome.ASSIGNMENT_NOT_FOUND,
    Outcome.SUBMISSION_NOT_FOUND,
    Outcome.PARTICIPANT_NOT_FOUND,
}
CONFLICT = {
    Outcome.INVALID_STATUS,
    Outcome.ALREADY_ASSIGNED,
    Outcome.ALREADY_STARTED,
    Outcome.FINALIZATION_PENDING,
    Outcome.PHASE_CLOSED,
    Outcome.SCORING_IN_PROGRESS,
    Outcome.PEER_REVIEW_NOT_ENDED,
    Outcome.UPDATE_FAILED,
}
FORBIDDEN = {Outcome.NOT_ALLOWED, Outcome.CHALLENGE_PRIVATE}
# reported with a 200 and a flag, a concurrent caller already did the work
BENIGN = {Outcome.OK, Outcome.ALREADY_ENDED, Outcome.ALREADY_FINALIZED, Outcome.ALREADY_JOINED}


def status_for(outcome: Outcome) -> int:
    if outcome in BENIGN:
        return status.HTTP_200_OK
    if outcome in NOT_FOUND:
        return status.HTTP_404_NOT_FOUND
    if outcome in CONFLICT:
        return status.HTTP_409_CONFLICT
    if outcome in FORBIDDEN:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_400_BAD_REQUEST


def ensure_ok(result: OperationResult) -> OperationResult:
    """Raise the HTTP error matching a failed outcome, otherwise hand the result back."""
    if result.outcome in BENIGN:
        return result
    detail: dict = {"code": result.outcome.value, "message": result.message or result.outcome.value}
    extra = {key: value for key, value in result.data.items() if isinstance(value, (str, int, float, bool, list))}
    detail.update(extra)
    raise HTTPException(status_code=status_for(result.outcome), detail=detail)
