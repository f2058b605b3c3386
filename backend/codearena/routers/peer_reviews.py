from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_context, get_current_session, get_current_user, get_student_user
from ..models import User
from ..schemas.peer_review import PeerReviewExitRequest, PeerReviewExitResponse, VotePublic, VoteRequest
from ..services.context import LifecycleContext
from ..services.peer_review_service import PeerReviewService
from .outcomes import ensure_ok

router = APIRouter(prefix="/peer-reviews", tags=["peer-reviews"])


@router.post("/assignments/{assignment_id}/vote", response_model=VotePublic)
async def cast_vote(
    assignment_id: str,
    payload: VoteRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(
        await PeerReviewService(session, context).submit_vote(
            user=current_user,
            assignment_id=assignment_id,
            vote=payload.vote,
            test_case_input=payload.test_case_input,
            expected_output=payload.expected_output,
        )
    )
    return result.data["vote"]


@router.post("/exit", response_model=PeerReviewExitResponse)
async def exit_peer_review(
    payload: PeerReviewExitRequest,
    current_user: User = Depends(get_student_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    """Leave the peer review: save the given votes and abstain on the rest."""
    result = ensure_ok(
        await PeerReviewService(session, context).exit_review(
            challenge_id=payload.challenge_id,
            user=current_user,
            votes=payload.votes,
        )
    )
    return result.data
