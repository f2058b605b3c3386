from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_context, get_current_session, get_current_user, get_student_user, get_teacher_user
from ..enums import ChallengeStatus, Outcome
from ..models import Challenge, User
from ..schemas.challenge import (
    ChallengeCreate,
    ChallengePublic,
    ChallengeUpdate,
    ExpectedReviewsUpdate,
    JoinResponse,
    MatchesOverview,
    ParticipantPublic,
    PeerReviewAssignRequest,
    ScoreBreakdownPublic,
)
from ..schemas.match_setting import MatchSettingPublic
from ..schemas.peer_review import MyReviewsResponse
from ..schemas.submission import MyMatchResponse, SubmissionPublic
from ..services import queries
from ..services.challenge_service import ChallengeService, STUDENT_VISIBLE_STATUSES
from ..services.context import LifecycleContext
from ..services.finalization import FinalizationService
from ..services.match_assignment import MatchAssignmentService
from ..services.peer_review_assignment import (
    PeerReviewAssignmentService,
    count_assignments_by_group,
    load_review_groups,
)
from ..services.peer_review_service import PeerReviewService
from ..services.phase_transitions import PhaseTransitionService
from ..services.results import OperationResult
from ..services.scoring_service import ScoringService
from ..services.submission_service import SubmissionService
from .outcomes import ensure_ok

router = APIRouter(prefix="/challenges", tags=["challenges"])


def _challenge_body(result: OperationResult, **extra) -> dict:
    body = {
        "status": result.outcome.value,
        "challenge": ChallengePublic.model_validate(result.challenge) if result.challenge is not None else None,
    }
    body.update(extra)
    return body


async def _visible_challenge(session: AsyncSession, challenge_id: str, user: User) -> Challenge:
    challenge = await queries.get_challenge(session, challenge_id)
    if challenge is None or (not user.is_privileged and challenge.status not in STUDENT_VISIBLE_STATUSES):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found.")
    return challenge


@router.post("", response_model=ChallengePublic, status_code=status.HTTP_201_CREATED)
async def create_challenge(
    payload: ChallengeCreate,
    current_user: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).create(creator=current_user, payload=payload))
    return result.challenge


@router.get("", response_model=list[ChallengePublic])
async def list_challenges(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    return await ChallengeService(session, context).list_for(current_user)


@router.get("/{challenge_id}", response_model=ChallengePublic)
async def get_challenge(
    challenge_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
):
    return await _visible_challenge(session, challenge_id, current_user)


@router.patch("/{challenge_id}", response_model=ChallengePublic)
async def update_challenge(
    challenge_id: str,
    payload: ChallengeUpdate,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).update(challenge_id, payload))
    return result.challenge


@router.post("/{challenge_id}/publish", response_model=ChallengePublic)
async def publish_challenge(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).publish(challenge_id))
    return result.challenge


@router.post("/{challenge_id}/unpublish", response_model=ChallengePublic)
async def unpublish_challenge(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).unpublish(challenge_id))
    return result.challenge


@router.post("/{challenge_id}/join", response_model=JoinResponse)
async def join_challenge(
    challenge_id: str,
    current_user: User = Depends(get_student_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).join(challenge_id, current_user))
    participant = result.data["participant"]
    return JoinResponse(participant_id=participant.id, already_joined=result.outcome == Outcome.ALREADY_JOINED)


@router.get("/{challenge_id}/participants", response_model=list[ParticipantPublic])
async def list_participants(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await ChallengeService(session, context).participants(challenge_id))
    return result.data["participants"]


@router.post("/{challenge_id}/assign")
async def assign_matches(
    challenge_id: str,
    overwrite: bool = Query(default=False),
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await MatchAssignmentService(session, context).assign(challenge_id, overwrite=overwrite))
    return _challenge_body(result, assignments=result.data["assignments"])


@router.post("/{challenge_id}/start")
async def start_challenge(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await PhaseTransitionService(session, context).start_coding_phase(challenge_id))
    return _challenge_body(result)


@router.post("/{challenge_id}/end-coding")
async def end_coding_phase(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await PhaseTransitionService(session, context).end_coding_phase(challenge_id))
    return _challenge_body(result, already_ended=result.outcome == Outcome.ALREADY_ENDED, **result.data)


@router.post("/{challenge_id}/peer-reviews/assign")
async def assign_peer_reviews(
    challenge_id: str,
    payload: PeerReviewAssignRequest | None = None,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    payload = payload or PeerReviewAssignRequest()
    expected_reviews = payload.expected_reviews_per_submission
    if expected_reviews is None:
        challenge = await queries.get_challenge(session, challenge_id)
        if challenge is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found.")
        expected_reviews = challenge.allowed_number_of_review

    result = ensure_ok(
        await PeerReviewAssignmentService(session, context).assign(
            challenge_id,
            expected_reviews=expected_reviews,
            reassign=payload.reassign,
        )
    )
    return _challenge_body(result, **result.data)


@router.post("/{challenge_id}/peer-reviews/start")
async def start_peer_review(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await PhaseTransitionService(session, context).start_peer_review(challenge_id))
    return _challenge_body(result)


@router.post("/{challenge_id}/end-peer-review")
async def end_peer_review(
    challenge_id: str,
    allow_early: bool = Query(default=True),
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(
        await PhaseTransitionService(session, context).end_peer_review(challenge_id, allow_early=allow_early)
    )
    return _challenge_body(result, already_finalized=result.outcome == Outcome.ALREADY_FINALIZED, **result.data)


@router.get("/{challenge_id}/matches", response_model=MatchesOverview)
async def get_challenge_matches(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    challenge = await queries.get_challenge(session, challenge_id, refresh=True)
    if challenge is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found.")

    stats = await FinalizationService(context).stats(session, challenge)
    groups = await load_review_groups(session, challenge_id)
    assignment_counts = await count_assignments_by_group(session, challenge_id)
    eligible = [group.challenge_match_setting_id for group in groups.values() if group.is_eligible]
    peer_review_ready = (
        challenge.status == ChallengeStatus.ENDED_CODING_PHASE
        and challenge.coding_phase_finalization_completed_at is not None
        and stats.results_ready
        and bool(eligible)
        and all(assignment_counts.get(cms_id, 0) > 0 for cms_id in eligible)
    )

    return {
        "challenge": ChallengePublic.model_validate(challenge),
        "assignments": await MatchAssignmentService(session, context).grouped_matches(challenge_id),
        "peer_review_assignments": await PeerReviewAssignmentService(session, context).list_assignments(challenge_id),
        "pending_final_count": stats.pending_final_count,
        "in_flight_submissions_count": stats.in_flight_submissions_count,
        "results_ready": stats.results_ready,
        "peer_review_ready": peer_review_ready,
        "finalization": stats.as_dict(),
    }


@router.patch("/{challenge_id}/expected-reviews", response_model=ChallengePublic)
async def update_expected_reviews(
    challenge_id: str,
    payload: ExpectedReviewsUpdate,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(
        await ChallengeService(session, context).update_expected_reviews(
            challenge_id, payload.expected_reviews_per_submission
        )
    )
    return result.challenge


@router.post("/{challenge_id}/scores/recompute")
async def recompute_scores(
    challenge_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    if await queries.get_challenge(session, challenge_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found.")
    result = ensure_ok(await ScoringService(session, context).compute(challenge_id, force=True))
    breakdowns = result.data.get("breakdowns") or []
    return _challenge_body(
        result,
        breakdowns=[ScoreBreakdownPublic.model_validate(breakdown) for breakdown in breakdowns],
    )


@router.get("/{challenge_id}/results", response_model=list[ScoreBreakdownPublic])
async def get_results(
    challenge_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    challenge = await _visible_challenge(session, challenge_id, current_user)
    if not current_user.is_privileged and challenge.status != ChallengeStatus.ENDED_PEER_REVIEW:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Results are not available yet.")
    return await ScoringService(session, context).results(challenge_id)


@router.get("/{challenge_id}/my-match", response_model=MyMatchResponse)
async def get_my_match(
    challenge_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await SubmissionService(session, context).my_match(challenge_id=challenge_id, user=current_user))
    match = result.data["match"]
    final = result.data["final_submission"]
    return {
        "match_id": match.id,
        "challenge_id": match.challenge_id,
        "challenge_match_setting_id": match.challenge_match_setting_id,
        "challenge": ChallengePublic.model_validate(result.challenge),
        "match_setting": MatchSettingPublic.model_validate(result.data["match_setting"]),
        "final_submission": SubmissionPublic.model_validate(final) if final is not None else None,
    }


@router.get("/{challenge_id}/peer-reviews/me", response_model=MyReviewsResponse)
async def get_my_peer_reviews(
    challenge_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    await _visible_challenge(session, challenge_id, current_user)
    result = ensure_ok(
        await PeerReviewService(session, context).my_assignments(challenge_id=challenge_id, user=current_user)
    )
    return {"challenge_id": challenge_id, "assignments": result.data["assignments"]}
