import random
from collections import Counter

import pytest

from codearena.engine.peer_review import (
    INSUFFICIENT_VALID_SUBMISSIONS,
    NO_REVIEWERS,
    PeerReviewPlanError,
    ReviewableSubmission,
    build_review_plan,
)


def _submissions(authors):
    return [ReviewableSubmission(id=f"s-{author}", author_id=author) for author in authors]


@pytest.mark.parametrize("seed", range(5))
def test_no_reviewer_is_assigned_their_own_submission(seed):
    reviewers = [f"r{i}" for i in range(6)]
    plan = build_review_plan(reviewers, _submissions(reviewers), 3, rng=random.Random(seed))

    authors = {f"s-{r}": r for r in reviewers}
    for assignment in plan.assignments:
        assert authors[assignment.submission_id] != assignment.reviewer_id


def test_every_reviewer_gets_the_same_load():
    reviewers = [f"r{i}" for i in range(5)]
    plan = build_review_plan(reviewers, _submissions(reviewers), 2, rng=random.Random(3))

    loads = plan.load_by_reviewer()
    assert set(loads) == set(reviewers)
    assert set(loads.values()) == {plan.reviews_per_reviewer}
    assert plan.total_assignments == len(plan.assignments)


def test_each_submission_gets_at_least_the_base_reviews():
    reviewers = [f"r{i}" for i in range(5)]
    submissions = _submissions(reviewers)
    plan = build_review_plan(reviewers, submissions, 2, rng=random.Random(4))

    per_submission = Counter(a.submission_id for a in plan.assignments)
    for submission in submissions:
        assert per_submission[submission.id] >= min(2, len(submissions) - 1)
        assert per_submission[submission.id] <= plan.base_reviews_per_submission + 1


def test_reviews_are_reduced_when_few_submissions_are_valid():
    # five reviewers, only two valid submissions: each can review at most one other
    reviewers = [f"r{i}" for i in range(5)]
    plan = build_review_plan(reviewers, _submissions(["r0", "r1"]), 3, rng=random.Random(0))

    assert plan.reviews_per_reviewer == 1
    assert plan.base_reviews_per_submission < 3
    per_submission = Counter(a.submission_id for a in plan.assignments)
    assert sum(per_submission.values()) == 5


def test_extra_reviews_are_marked():
    # r3 has no valid submission but still reviews, which leaves two surplus reviews
    reviewers = [f"r{i}" for i in range(4)]
    plan = build_review_plan(reviewers, _submissions(["r0", "r1", "r2"]), 2, rng=random.Random(2))

    assert plan.extra_reviews == 2
    extras = [a for a in plan.assignments if a.is_extra]
    assert len(extras) == plan.extra_reviews


def test_single_valid_submission_cannot_be_reviewed():
    with pytest.raises(PeerReviewPlanError) as excinfo:
        build_review_plan(["r0", "r1"], _submissions(["r0"]), 2)
    assert excinfo.value.code == INSUFFICIENT_VALID_SUBMISSIONS


def test_reviewers_are_required():
    with pytest.raises(PeerReviewPlanError) as excinfo:
        build_review_plan([], _submissions(["r0", "r1"]), 2)
    assert excinfo.value.code == NO_REVIEWERS
