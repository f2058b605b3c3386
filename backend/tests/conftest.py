"""
Shared fixtures: a file-backed SQLite database per test, a fake judge and
helpers that seed users, problems and challenges.

The fake judge understands a single toy problem: the input is a JSON array of
integers and the expected output is ``[sum]``. Code strings select behaviour.
"""
import json
import random
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from codearena.clock import utcnow
from codearena.config import Settings
from codearena.database import build_session_factory, create_schema, make_engine
from codearena.engine.evaluation import normalize_output
from codearena.enums import ChallengeStatus, MatchSettingStatus, Outcome, UserRole
from codearena.judge import CaseResult, ExecutionResult, compile_failure
from codearena.main import build_context, create_app
from codearena.models import Challenge, ChallengeMatchSetting, ChallengeParticipant, MatchSetting, User
from codearena.security import create_access_token, get_password_hash
from codearena.services.match_assignment import MatchAssignmentService
from codearena.services.phase_transitions import PhaseTransitionService
from codearena.services.submission_service import SubmissionService

REFERENCE = "def solve(values): return sum(values)"
SOLUTION = "def solve(values): return sum(values)  # student"
OFF_BY_ONE = "def solve(values): return sum(values) + (1 if len(values) > 2 else 0)  # off_by_one"
BROKEN = "def solve(values) return  # syntax error"
PARTIAL = "def solve(values): return sum(values) + (1 if len(values) == 1 else 0)  # single_off"
SLOW = "def solve(values):\n    while True: pass  # loop"

PUBLIC_TESTS = [{"input": [1, 2], "output": [3]}, {"input": [5], "output": [5]}]
PRIVATE_TESTS = [{"input": [1, 2, 3], "output": [6]}, {"input": [10, 20], "output": [30]}]


class FakeJudge:
    def __init__(self) -> None:
        self.calls: list[tuple[str, list]] = []
        self.unavailable = False

    async def execute(self, code, language, test_cases):
        cases = list(test_cases)
        self.calls.append((code, cases))
        if self.unavailable:
            return compile_failure("The judge is unavailable.", cases, judge_unavailable=True)
        if "syntax error" in code:
            return compile_failure("SyntaxError: invalid syntax", cases)

        results = []
        for case in cases:
            values = case["input"]
            if isinstance(values, str):
                values = json.loads(values)
            if "loop" in code:
                results.append(CaseResult(passed=False, expected_output=case["output"], exit_code=124))
                continue
            total = sum(values)
            if "off_by_one" in code and len(values) > 2:
                total += 1
            if "single_off" in code and len(values) == 1:
                total += 1
            actual = json.dumps([total])
            results.append(
                CaseResult(
                    passed=actual == normalize_output(case["output"]),
                    expected_output=case["output"],
                    actual_output=actual,
                )
            )
        return ExecutionResult(is_compiled=True, test_results=results)


@pytest.fixture
def judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'codearena-test.db'}",
        coding_phase_autosubmit_grace_ms=0,
        finalization_retry_seconds=0.05,
        restore_phase_timers=False,
        secret_key="test-secret",
    )


@pytest.fixture
async def session_factory(settings):
    engine = make_engine(settings.database_url)
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def context(settings, session_factory, judge):
    ctx = build_context(settings, session_factory=session_factory, judge=judge)
    yield ctx
    await ctx.scheduler.shutdown()
    await ctx.broadcaster.drain()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture
async def app(settings, session_factory, judge):
    application = create_app(settings, session_factory=session_factory, judge=judge, init_database=False)
    yield application
    await application.state.context.scheduler.shutdown()
    await application.state.context.broadcaster.drain()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


class Seeder:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory
        self._counter = 0

    async def _save(self, *rows):
        async with self.session_factory() as db:
            for row in rows:
                db.add(row)
            await db.commit()
            for row in rows:
                await db.refresh(row)
        return rows

    async def user(self, role: UserRole = UserRole.STUDENT, name: str | None = None) -> User:
        self._counter += 1
        username = name or f"{role.value}{self._counter}"
        (user,) = await self._save(
            User(
                email=f"{username}@example.com",
                username=username,
                hashed_password=get_password_hash("password123"),
                role=role,
            )
        )
        return user

    async def students(self, count: int) -> list[User]:
        return [await self.user() for _ in range(count)]

    async def match_setting(self, *, ready: bool = True, title: str = "Sum of values", **overrides) -> MatchSetting:
        fields = dict(
            problem_title=title,
            problem_description="Print the sum of the values.",
            reference_solution=REFERENCE,
            starter_code="def solve(values):\n    pass",
            public_tests=PUBLIC_TESTS,
            private_tests=PRIVATE_TESTS,
            status=MatchSettingStatus.READY if ready else MatchSettingStatus.DRAFT,
        )
        fields.update(overrides)
        (setting,) = await self._save(MatchSetting(**fields))
        return setting

    async def challenge(
        self,
        *,
        status: ChallengeStatus = ChallengeStatus.PUBLIC,
        settings: list[MatchSetting] | None = None,
        starts_in: timedelta = timedelta(minutes=-1),
        duration: int = 30,
        **overrides,
    ) -> Challenge:
        start = utcnow() + starts_in
        fields = dict(
            title="Weekly challenge",
            start_datetime=start,
            end_datetime=start + timedelta(hours=3),
            duration=duration,
            duration_peer_review=20,
            allowed_number_of_review=2,
            status=status,
        )
        fields.update(overrides)
        (challenge,) = await self._save(Challenge(**fields))
        links = [
            ChallengeMatchSetting(challenge_id=challenge.id, match_setting_id=setting.id, position=index)
            for index, setting in enumerate(settings or [])
        ]
        if links:
            await self._save(*links)
        return challenge

    async def join(self, challenge: Challenge, students: list[User]) -> list[ChallengeParticipant]:
        participants = [ChallengeParticipant(challenge_id=challenge.id, student_id=student.id) for student in students]
        return list(await self._save(*participants))


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


async def assigned_challenge(seed: Seeder, context, student_count: int = 3):
    setting = await seed.match_setting()
    challenge = await seed.challenge(settings=[setting])
    students = await seed.students(student_count)
    await seed.join(challenge, students)
    async with context.session_factory() as db:
        result = await MatchAssignmentService(db, context, rng=random.Random(0)).assign(challenge.id)
    assert result.outcome == Outcome.OK
    return challenge, students


async def started_challenge(seed: Seeder, context, student_count: int = 3):
    challenge, students = await assigned_challenge(seed, context, student_count)
    async with context.session_factory() as db:
        result = await PhaseTransitionService(db, context).start_coding_phase(challenge.id)
    assert result.outcome == Outcome.OK
    return challenge, students


async def match_id_for(context, challenge_id: str, student: User) -> str:
    async with context.session_factory() as db:
        result = await SubmissionService(db, context).my_match(challenge_id=challenge_id, user=student)
    return result.data["match"].id


async def submit(context, challenge_id: str, student: User, code: str, *, is_automatic: bool = False):
    match_id = await match_id_for(context, challenge_id, student)
    async with context.session_factory() as db:
        return await SubmissionService(db, context).submit(
            user=student, match_id=match_id, code=code, language="python", is_automatic=is_automatic
        )


async def end_coding(context, challenge_id: str):
    async with context.session_factory() as db:
        return await PhaseTransitionService(db, context).end_coding_phase(challenge_id)
