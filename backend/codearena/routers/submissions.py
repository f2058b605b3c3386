from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..dependencies import get_context, get_current_session, get_current_user
from ..models import User
from ..schemas.submission import RunRequest, RunResult, SubmissionPublic, SubmissionRequest, SubmissionResult
from ..services.context import LifecycleContext
from ..services.submission_service import SubmissionService
from .outcomes import ensure_ok

router = APIRouter(tags=["submissions"])


@router.post("/matches/{match_id}/submissions", response_model=SubmissionResult)
async def submit_code(
    match_id: str,
    payload: SubmissionRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(
        await SubmissionService(session, context).submit(
            user=current_user,
            match_id=match_id,
            code=payload.code,
            language=payload.language,
            is_automatic=payload.is_automatic,
        )
    )
    public = result.data["public"]
    private = result.data["private"]
    return SubmissionResult(
        submission=SubmissionPublic.model_validate(result.data["submission"]),
        public_summary=public.summary,
        private_summary=private.summary,
        public_test_results=[case.as_dict() for case in public.test_results],
        is_compiled=public.is_compiled and private.is_compiled,
        is_passed=public.is_passed and private.is_passed,
    )


@router.post("/matches/{match_id}/run", response_model=RunResult)
async def run_code(
    match_id: str,
    payload: RunRequest,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(
        await SubmissionService(session, context).run(
            user=current_user,
            match_id=match_id,
            code=payload.code,
            language=payload.language,
            custom_tests=[case.model_dump() for case in payload.custom_tests],
        )
    )
    execution = result.data["result"]
    return RunResult(
        is_compiled=execution.is_compiled,
        is_passed=execution.is_passed,
        summary=execution.summary,
        test_results=[case.as_dict() for case in execution.test_results],
    )


@router.get("/submissions/{submission_id}", response_model=SubmissionPublic)
async def get_submission(
    submission_id: str,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    result = ensure_ok(await SubmissionService(session, context).get_for_user(submission_id, current_user))
    return result.data["submission"]
