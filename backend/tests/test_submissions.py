from codearena.enums import Outcome, SubmissionStatus, UserRole
from codearena.services.submission_service import SubmissionService

from conftest import BROKEN, OFF_BY_ONE, SLOW, SOLUTION, assigned_challenge, match_id_for, started_challenge, submit


async def test_submission_status_follows_public_and_private_tests(seed, context):
    challenge, (first, second, third) = await started_challenge(seed, context)

    correct = await submit(context, challenge.id, first, SOLUTION)
    improvable = await submit(context, challenge.id, second, OFF_BY_ONE)
    slow = await submit(context, challenge.id, third, SLOW)

    assert correct.data["submission"].status == SubmissionStatus.PROBABLY_CORRECT
    assert improvable.data["submission"].status == SubmissionStatus.IMPROVABLE
    assert slow.data["submission"].status == SubmissionStatus.WRONG
    assert correct.data["public"].summary["all_passed"]
    assert not improvable.data["private"].is_passed


async def test_compile_errors_skip_private_tests(seed, context, judge):
    challenge, (student, *_rest) = await started_challenge(seed, context)

    result = await submit(context, challenge.id, student, BROKEN)

    assert result.outcome == Outcome.OK
    assert not result.data["submission"].is_compiled
    assert not result.data["private"].is_compiled
    # only the public run reached the judge
    assert [code for code, _ in judge.calls] == [BROKEN]


async def test_latest_compiled_manual_submission_becomes_final(seed, context, session):
    challenge, (student, *_rest) = await started_challenge(seed, context)

    first = await submit(context, challenge.id, student, SOLUTION)
    second = await submit(context, challenge.id, student, OFF_BY_ONE)

    assert second.data["submission"].is_final
    await session.refresh(first.data["submission"])
    assert not first.data["submission"].is_final


async def test_submissions_need_a_running_coding_phase(seed, context):
    challenge, (student, *_rest) = await assigned_challenge(seed, context)

    result = await submit(context, challenge.id, student, SOLUTION)
    assert result.outcome == Outcome.PHASE_CLOSED
    assert context.tracker.count(challenge.id) == 0


async def test_students_cannot_submit_to_someone_elses_match(seed, context):
    challenge, (owner, intruder, _third) = await started_challenge(seed, context)
    match_id = await match_id_for(context, challenge.id, owner)

    async with context.session_factory() as db:
        service = SubmissionService(db, context)
        stolen = await service.submit(user=intruder, match_id=match_id, code=SOLUTION)
        empty = await service.submit(user=owner, match_id=match_id, code="   ")
        missing = await service.submit(user=owner, match_id="missing", code=SOLUTION)

    assert stolen.outcome == Outcome.NOT_ALLOWED
    assert empty.outcome == Outcome.INVALID_INPUT
    assert missing.outcome == Outcome.MATCH_NOT_FOUND


async def test_run_uses_public_and_custom_tests_without_storing(seed, context, session):
    challenge, (student, *_rest) = await started_challenge(seed, context)
    match_id = await match_id_for(context, challenge.id, student)

    async with context.session_factory() as db:
        result = await SubmissionService(db, context).run(
            user=student,
            match_id=match_id,
            code=OFF_BY_ONE,
            custom_tests=[{"input": [1, 1, 1], "output": [3]}],
        )

    execution = result.data["result"]
    assert execution.summary == {"total": 3, "passed": 2, "failed": 1, "all_passed": False}
    async with context.session_factory() as db:
        my_match = await SubmissionService(db, context).my_match(challenge_id=challenge.id, user=student)
    assert my_match.data["final_submission"] is None


async def test_submissions_are_private_to_their_author(seed, context):
    challenge, (author, other, _third) = await started_challenge(seed, context)
    teacher = await seed.user(UserRole.TEACHER)
    submission = (await submit(context, challenge.id, author, SOLUTION)).data["submission"]

    async with context.session_factory() as db:
        service = SubmissionService(db, context)
        assert (await service.get_for_user(submission.id, author)).ok
        assert (await service.get_for_user(submission.id, teacher)).ok
        hidden = await service.get_for_user(submission.id, other)
    assert hidden.outcome == Outcome.SUBMISSION_NOT_FOUND
