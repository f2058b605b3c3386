import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..clock import utcnow
from ..dependencies import get_context, get_current_session, get_teacher_user
from ..enums import MatchSettingStatus
from ..models import MatchSetting, User
from ..schemas.match_setting import MatchSettingCreate, MatchSettingDetail, MatchSettingUpdate
from ..services.context import LifecycleContext

router = APIRouter(prefix="/match-settings", tags=["match-settings"])
logger = logging.getLogger(__name__)


async def _get_or_404(session: AsyncSession, match_setting_id: str) -> MatchSetting:
    setting = await session.get(MatchSetting, match_setting_id)
    if setting is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Match setting not found.")
    return setting


@router.post("", response_model=MatchSettingDetail, status_code=status.HTTP_201_CREATED)
async def create_match_setting(
    payload: MatchSettingCreate,
    current_user: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
):
    setting = MatchSetting(
        problem_title=payload.problem_title,
        problem_description=payload.problem_description,
        reference_solution=payload.reference_solution,
        starter_code=payload.starter_code,
        public_tests=[case.model_dump() for case in payload.public_tests],
        private_tests=[case.model_dump() for case in payload.private_tests],
        creator_id=current_user.id,
    )
    session.add(setting)
    await session.commit()
    await session.refresh(setting)
    return setting


@router.get("", response_model=list[MatchSettingDetail])
async def list_match_settings(
    status_filter: MatchSettingStatus | None = None,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
):
    statement = select(MatchSetting).order_by(MatchSetting.created_at.desc())
    if status_filter is not None:
        statement = statement.where(MatchSetting.status == status_filter)
    return (await session.execute(statement)).scalars().all()


@router.get("/{match_setting_id}", response_model=MatchSettingDetail)
async def get_match_setting(
    match_setting_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
):
    return await _get_or_404(session, match_setting_id)


@router.patch("/{match_setting_id}", response_model=MatchSettingDetail)
async def update_match_setting(
    match_setting_id: str,
    payload: MatchSettingUpdate,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
):
    setting = await _get_or_404(session, match_setting_id)
    if setting.status != MatchSettingStatus.DRAFT:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only draft match settings can be edited.")

    changes = payload.model_dump(exclude_unset=True)
    for field_name, value in changes.items():
        setattr(setting, field_name, value)
    setting.updated_at = utcnow()
    session.add(setting)
    await session.commit()
    await session.refresh(setting)
    return setting


@router.post("/{match_setting_id}/ready", response_model=MatchSettingDetail)
async def mark_match_setting_ready(
    match_setting_id: str,
    _: User = Depends(get_teacher_user),
    session: AsyncSession = Depends(get_current_session),
    context: LifecycleContext = Depends(get_context),
):
    """Check the reference solution against every test before the problem can be used."""
    setting = await _get_or_404(session, match_setting_id)
    if setting.status == MatchSettingStatus.READY:
        return setting
    if not setting.reference_solution or not setting.reference_solution.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A reference solution is required.")
    if not setting.public_tests or not setting.private_tests:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one public and one private test are required.",
        )

    tests = list(setting.public_tests) + list(setting.private_tests)
    result = await context.judge.execute(setting.reference_solution, context.settings.default_language, tests)
    if not result.is_passed:
        logger.info("Reference solution for match setting %s failed validation", setting.id)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "The reference solution does not pass its own tests.",
                "summary": result.summary,
                "error": result.error,
            },
        )

    setting.status = MatchSettingStatus.READY
    setting.updated_at = utcnow()
    session.add(setting)
    await session.commit()
    await session.refresh(setting)
    return setting
