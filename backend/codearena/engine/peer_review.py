"""
Peer review planning for a single problem group.

Every reviewer receives the same number of reviews and every valid
submission receives ``base`` or ``base + 1`` reviewers, never from its own
author. The plan is solved as a bipartite flow problem:

    source -> reviewer (cap: reviews per reviewer)
    reviewer -> submission (cap: 1, skipped for the author)
    submission -> sink (cap: target reviews for that submission)

A complete plan exists only when the maximum flow saturates every reviewer.
"""
import math
import random
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Sequence

NO_REVIEWERS = "no_reviewers"
INSUFFICIENT_VALID_SUBMISSIONS = "insufficient_valid_submissions"
ASSIGNMENT_FAILED = "assignment_failed"


class PeerReviewPlanError(ValueError):
    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code


@dataclass(frozen=True)
class ReviewableSubmission:
    id: str
    author_id: str


@dataclass(frozen=True)
class PlannedAssignment:
    submission_id: str
    reviewer_id: str
    is_extra: bool = False


@dataclass
class ReviewPlan:
    reviews_per_reviewer: int
    base_reviews_per_submission: int
    extra_reviews: int
    total_assignments: int
    assignments: list[PlannedAssignment] = field(default_factory=list)

    def reviewers_for(self, submission_id: str) -> list[str]:
        return [a.reviewer_id for a in self.assignments if a.submission_id == submission_id]

    def load_by_reviewer(self) -> dict[str, int]:
        load: dict[str, int] = defaultdict(int)
        for assignment in self.assignments:
            load[assignment.reviewer_id] += 1
        return dict(load)


class _Edge:
    __slots__ = ("to", "rev", "cap")

    def __init__(self, to: int, rev: int, cap: int) -> None:
        self.to = to
        self.rev = rev
        self.cap = cap


class _FlowNetwork:
    """Dinic's algorithm over an adjacency list."""

    def __init__(self, size: int) -> None:
        self.graph: list[list[_Edge]] = [[] for _ in range(size)]
        self._level = [-1] * size
        self._iter = [0] * size

    def add_edge(self, source: int, target: int, cap: int) -> None:
        self.graph[source].append(_Edge(target, len(self.graph[target]), cap))
        self.graph[target].append(_Edge(source, len(self.graph[source]) - 1, 0))

    def _bfs(self, source: int, sink: int) -> bool:
        self._level = [-1] * len(self.graph)
        self._level[source] = 0
        queue = deque([source])
        while queue:
            node = queue.popleft()
            for edge in self.graph[node]:
                if edge.cap > 0 and self._level[edge.to] < 0:
                    self._level[edge.to] = self._level[node] + 1
                    queue.append(edge.to)
        return self._level[sink] >= 0

    def _dfs(self, node: int, sink: int, flow: int) -> int:
        if node == sink:
            return flow
        edges = self.graph[node]
        while self._iter[node] < len(edges):
            edge = edges[self._iter[node]]
            if edge.cap > 0 and self._level[node] < self._level[edge.to]:
                pushed = self._dfs(edge.to, sink, min(flow, edge.cap))
                if pushed > 0:
                    edge.cap -= pushed
                    self.graph[edge.to][edge.rev].cap += pushed
                    return pushed
            self._iter[node] += 1
        return 0

    def max_flow(self, source: int, sink: int) -> int:
        total = 0
        while self._bfs(source, sink):
            self._iter = [0] * len(self.graph)
            while True:
                pushed = self._dfs(source, sink, math.inf)
                if pushed <= 0:
                    break
                total += pushed
        return total


def _target_counts(
    submissions: Sequence[ReviewableSubmission],
    base: int,
    extra: int,
    rng: random.Random,
) -> dict[str, int]:
    counts = {submission.id: base for submission in submissions}
    if extra > 0 and submissions:
        order = list(submissions)
        rng.shuffle(order)
        for index in range(extra):
            counts[order[index % len(order)].id] += 1
    return counts


def _solve_flow(
    reviewer_ids: Sequence[str],
    submissions: Sequence[ReviewableSubmission],
    targets: dict[str, int],
    reviews_per_reviewer: int,
    rng: random.Random,
) -> list[PlannedAssignment] | None:
    reviewers = list(reviewer_ids)
    rng.shuffle(reviewers)
    ordered = list(submissions)
    rng.shuffle(ordered)

    source = 0
    reviewer_offset = 1
    submission_offset = reviewer_offset + len(reviewers)
    sink = submission_offset + len(ordered)
    network = _FlowNetwork(sink + 1)

    for index, reviewer_id in enumerate(reviewers):
        reviewer_node = reviewer_offset + index
        network.add_edge(source, reviewer_node, reviews_per_reviewer)
        candidates = list(range(len(ordered)))
        rng.shuffle(candidates)
        for submission_index in candidates:
            if ordered[submission_index].author_id == reviewer_id:
                continue
            network.add_edge(reviewer_node, submission_offset + submission_index, 1)

    for index, submission in enumerate(ordered):
        target = targets.get(submission.id, 0)
        if target > 0:
            network.add_edge(submission_offset + index, sink, target)

    if network.max_flow(source, sink) != len(reviewers) * reviews_per_reviewer:
        return None

    assignments: list[PlannedAssignment] = []
    for index, reviewer_id in enumerate(reviewers):
        for edge in network.graph[reviewer_offset + index]:
            if not submission_offset <= edge.to < sink:
                continue
            # a saturated forward edge leaves its capacity on the reverse edge
            if network.graph[edge.to][edge.rev].cap > 0:
                submission = ordered[edge.to - submission_offset]
                assignments.append(PlannedAssignment(submission_id=submission.id, reviewer_id=reviewer_id))
    return assignments


def _mark_extra(
    assignments: list[PlannedAssignment],
    base_reviews: int,
    rng: random.Random,
) -> list[PlannedAssignment]:
    grouped: dict[str, list[PlannedAssignment]] = defaultdict(list)
    for assignment in assignments:
        grouped[assignment.submission_id].append(assignment)

    marked: list[PlannedAssignment] = []
    for group in grouped.values():
        extra_count = max(0, len(group) - base_reviews)
        shuffled = list(group)
        rng.shuffle(shuffled)
        for index, assignment in enumerate(shuffled):
            marked.append(
                PlannedAssignment(
                    submission_id=assignment.submission_id,
                    reviewer_id=assignment.reviewer_id,
                    is_extra=index < extra_count,
                )
            )
    return marked


def build_review_plan(
    reviewer_ids: Sequence[str],
    submissions: Sequence[ReviewableSubmission],
    expected_reviews: int,
    *,
    rng: random.Random | None = None,
) -> ReviewPlan:
    rng = rng or random.Random()
    reviewers = list(dict.fromkeys(reviewer_ids))
    if not reviewers:
        raise PeerReviewPlanError(NO_REVIEWERS)

    valid_count = len(submissions)
    total_desired = valid_count * expected_reviews
    reviews_per_reviewer = min(math.ceil(total_desired / len(reviewers)), valid_count - 1)
    if reviews_per_reviewer <= 0:
        raise PeerReviewPlanError(INSUFFICIENT_VALID_SUBMISSIONS)

    total_assigned = reviews_per_reviewer * len(reviewers)
    if total_assigned >= total_desired:
        base_reviews = expected_reviews
    else:
        base_reviews = total_assigned // valid_count
    extra_reviews = total_assigned - base_reviews * valid_count

    targets = _target_counts(submissions, base_reviews, extra_reviews, rng)
    assignments = _solve_flow(reviewers, submissions, targets, reviews_per_reviewer, rng)
    if assignments is None:
        raise PeerReviewPlanError(ASSIGNMENT_FAILED, "Peer review assignments could not be generated.")

    return ReviewPlan(
        reviews_per_reviewer=reviews_per_reviewer,
        base_reviews_per_submission=base_reviews,
        extra_reviews=extra_reviews,
        total_assignments=total_assigned,
        assignments=_mark_extra(assignments, base_reviews, rng),
    )
