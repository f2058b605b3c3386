from codearena.engine.evaluation import (
    evaluate_counter_example,
    evaluate_unavailable_run,
    evaluate_vote,
    normalize_output,
    passed_test_count,
    replaces_final,
    submission_status,
)
from codearena.engine.phases import can_transition, has_reached
from codearena.enums import ChallengeStatus, EvaluationStatus, SubmissionStatus, VoteType


def test_submission_status_ladder():
    assert submission_status(False, True) == SubmissionStatus.WRONG
    assert submission_status(True, False) == SubmissionStatus.IMPROVABLE
    assert submission_status(True, True) == SubmissionStatus.PROBABLY_CORRECT


def test_final_is_replaced_only_by_more_passed_tests():
    judged = [{"passed": True}, {"passed": False}]
    assert passed_test_count(judged, [{"passed": True}]) == 2
    assert passed_test_count(None, []) == 0
    assert replaces_final(3, judged, [{"passed": True}])
    assert not replaces_final(2, judged, [{"passed": True}])
    assert replaces_final(0, None, None)


def test_outputs_are_compared_after_normalizing():
    assert normalize_output(" [3]\n") == "[3]"
    assert normalize_output([3]) == "[3]"
    assert normalize_output(None) is None


def test_counter_example_that_exposes_a_bug():
    evaluation = evaluate_counter_example(
        expected_output="[3]",
        reference_output="[3]",
        is_compiled=True,
        actual_output="[4]",
        exit_code=0,
    )
    assert evaluation.evaluation_status == EvaluationStatus.BUG_PROVEN
    assert evaluation.is_bug_proven and evaluation.is_vote_correct


def test_counter_example_on_a_correct_submission():
    evaluation = evaluate_counter_example(
        expected_output="[3]",
        reference_output="[3]",
        is_compiled=True,
        actual_output="[3]",
        exit_code=0,
    )
    assert evaluation.evaluation_status == EvaluationStatus.NO_BUG
    assert evaluation.is_vote_correct is False


def test_wrong_expected_output_invalidates_the_vote():
    evaluation = evaluate_counter_example(
        expected_output="[5]",
        reference_output="[3]",
        is_compiled=True,
        actual_output="[4]",
        exit_code=0,
    )
    assert evaluation.evaluation_status == EvaluationStatus.INVALID_OUTPUT
    assert evaluation.is_expected_output_correct is False
    assert evaluation.is_vote_correct is False


def test_timeout_and_runtime_errors_prove_a_bug():
    timeout = evaluate_counter_example(
        expected_output="[3]", reference_output="[3]", is_compiled=True, actual_output=None, exit_code=124
    )
    crash = evaluate_counter_example(
        expected_output="[3]", reference_output="[3]", is_compiled=True, actual_output=None, exit_code=1
    )
    assert timeout.evaluation_status == EvaluationStatus.TIMEOUT
    assert crash.evaluation_status == EvaluationStatus.RUNTIME_ERROR
    assert timeout.is_vote_correct and crash.is_vote_correct


def test_unavailable_judge_never_credits_a_bug():
    evaluation = evaluate_unavailable_run(expected_output="[3]", reference_output="[3]")
    assert evaluation.is_bug_proven is False
    assert evaluation.is_vote_correct is False


def test_votes_without_a_run():
    assert evaluate_vote(VoteType.CORRECT, SubmissionStatus.PROBABLY_CORRECT).is_vote_correct is True
    assert evaluate_vote(VoteType.CORRECT, SubmissionStatus.IMPROVABLE).is_vote_correct is False
    assert evaluate_vote(VoteType.ABSTAIN, SubmissionStatus.IMPROVABLE).is_vote_correct is None
    assert evaluate_vote(VoteType.INCORRECT, SubmissionStatus.IMPROVABLE) is None


def test_phase_order():
    assert can_transition(ChallengeStatus.PUBLIC, ChallengeStatus.ASSIGNED)
    assert not can_transition(ChallengeStatus.PUBLIC, ChallengeStatus.STARTED_CODING_PHASE)
    assert not can_transition(ChallengeStatus.ENDED_PEER_REVIEW, ChallengeStatus.PUBLIC)
    assert has_reached(ChallengeStatus.STARTED_PEER_REVIEW, ChallengeStatus.ENDED_CODING_PHASE)
    assert not has_reached(ChallengeStatus.ASSIGNED, ChallengeStatus.STARTED_CODING_PHASE)
