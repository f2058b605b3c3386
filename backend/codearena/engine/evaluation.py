import json
from dataclasses import dataclass
from typing import Any

from ..enums import EvaluationStatus, SubmissionStatus, VoteType

VALID_FOR_REVIEW = (SubmissionStatus.IMPROVABLE, SubmissionStatus.PROBABLY_CORRECT)


def normalize_output(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value)


def submission_status(public_passed: bool, private_passed: bool) -> SubmissionStatus:
    if not public_passed:
        return SubmissionStatus.WRONG
    if not private_passed:
        return SubmissionStatus.IMPROVABLE
    return SubmissionStatus.PROBABLY_CORRECT


def passed_test_count(*result_lists: list | None) -> int:
    return sum(1 for results in result_lists for result in results or [] if result.get("passed"))


def replaces_final(candidate_passed: int, current_public: list | None, current_private: list | None) -> bool:
    """
    An automatic submission replaces the final one when it passes more tests.
    A final without judge results, such as the backfilled template, is always replaced.
    """
    if current_public is None and current_private is None:
        return True
    return candidate_passed > passed_test_count(current_public, current_private)


@dataclass
class VoteEvaluation:
    is_expected_output_correct: bool | None = None
    is_bug_proven: bool | None = None
    is_vote_correct: bool | None = None
    evaluation_status: EvaluationStatus | None = None
    reference_output: str | None = None
    actual_output: str | None = None


def evaluate_correct_vote(submission_status_value: SubmissionStatus) -> VoteEvaluation:
    return VoteEvaluation(is_vote_correct=submission_status_value == SubmissionStatus.PROBABLY_CORRECT)


def evaluate_counter_example(
    *,
    expected_output: Any,
    reference_output: Any,
    is_compiled: bool,
    actual_output: Any,
    exit_code: int,
    timeout_exit_code: int = 124,
) -> VoteEvaluation:
    """
    Judge an ``incorrect`` vote backed by a test case.

    The reviewer's expected output must agree with the reference solution
    before any bug the submission shows on that input counts in their favour.
    """
    expected = normalize_output(expected_output)
    reference = normalize_output(reference_output)
    actual = normalize_output(actual_output)
    expected_correct = reference is not None and expected == reference

    if not is_compiled:
        status = EvaluationStatus.COMPILE_ERROR
        bug_proven = True
    elif exit_code == timeout_exit_code:
        status = EvaluationStatus.TIMEOUT
        bug_proven = True
    elif exit_code != 0:
        status = EvaluationStatus.RUNTIME_ERROR
        bug_proven = True
    else:
        bug_proven = actual is not None and reference is not None and actual != reference
        status = EvaluationStatus.BUG_PROVEN if bug_proven else EvaluationStatus.NO_BUG

    if not expected_correct:
        status = EvaluationStatus.INVALID_OUTPUT

    return VoteEvaluation(
        is_expected_output_correct=expected_correct,
        is_bug_proven=bug_proven,
        is_vote_correct=bug_proven and expected_correct,
        evaluation_status=status,
        reference_output=reference,
        actual_output=actual,
    )


def evaluate_unavailable_run(*, expected_output: Any, reference_output: Any) -> VoteEvaluation:
    """The submission could not be run on the reviewer's input, so no bug is credited."""
    expected = normalize_output(expected_output)
    reference = normalize_output(reference_output)
    expected_correct = reference is not None and expected == reference
    return VoteEvaluation(
        is_expected_output_correct=expected_correct,
        is_bug_proven=False,
        is_vote_correct=False,
        evaluation_status=EvaluationStatus.RUNTIME_ERROR if expected_correct else EvaluationStatus.INVALID_OUTPUT,
        reference_output=reference,
    )


def evaluate_vote(vote: VoteType, submission_status_value: SubmissionStatus) -> VoteEvaluation | None:
    """Evaluation for votes that need no judge run; ``None`` means a run is required."""
    if vote == VoteType.CORRECT:
        return evaluate_correct_vote(submission_status_value)
    if vote == VoteType.ABSTAIN:
        return VoteEvaluation()
    return None
