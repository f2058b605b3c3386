from datetime import timedelta

from codearena.clock import utcnow
from codearena.enums import ChallengeStatus, UserRole
from codearena.services.peer_review_assignment import PeerReviewAssignmentService
from codearena.services.phase_transitions import PhaseTransitionService

from conftest import (
    BROKEN,
    PRIVATE_TESTS,
    PUBLIC_TESTS,
    REFERENCE,
    SOLUTION,
    assigned_challenge,
    auth_headers,
    end_coding,
    match_id_for,
    started_challenge,
    submit,
)


async def test_healthcheck(client):
    response = await client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_register_login_and_profile(client):
    payload = {"email": "dana@example.com", "username": "dana", "password": "secret123"}
    registered = await client.post("/api/auth/register", json=payload)
    assert registered.status_code == 200
    body = registered.json()
    assert body["user"]["role"] == "student"

    duplicate = await client.post("/api/auth/register", json={**payload, "username": "dana2"})
    assert duplicate.status_code == 400

    wrong = await client.post("/api/auth/login", json={"email": payload["email"], "password": "nope123"})
    assert wrong.status_code == 401

    login = await client.post("/api/auth/login", json={"email": payload["email"], "password": payload["password"]})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["username"] == "dana"


async def test_admin_accounts_cannot_be_registered(client):
    response = await client.post(
        "/api/auth/register",
        json={"email": "root@example.com", "username": "root", "password": "secret123", "role": "admin"},
    )
    assert response.status_code == 422


async def test_authentication_is_required(client):
    assert (await client.get("/api/users/me")).status_code == 401
    bad = await client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


async def test_students_cannot_use_teacher_routes(client, seed):
    student = await seed.user()
    response = await client.post(
        "/api/match-settings",
        json={"problem_title": "Sum"},
        headers=auth_headers(student),
    )
    assert response.status_code == 403


async def test_match_setting_becomes_ready_when_reference_passes(client, seed, judge):
    teacher = await seed.user(UserRole.TEACHER)
    headers = auth_headers(teacher)
    created = await client.post(
        "/api/match-settings",
        json={
            "problem_title": "Sum",
            "reference_solution": REFERENCE,
            "public_tests": PUBLIC_TESTS,
            "private_tests": PRIVATE_TESTS,
        },
        headers=headers,
    )
    assert created.status_code == 201
    setting_id = created.json()["id"]
    assert created.json()["status"] == "draft"

    ready = await client.post(f"/api/match-settings/{setting_id}/ready", headers=headers)
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"
    assert judge.calls

    locked = await client.patch(f"/api/match-settings/{setting_id}", json={"problem_title": "Changed"}, headers=headers)
    assert locked.status_code == 409


async def test_match_setting_with_broken_reference_stays_draft(client, seed):
    teacher = await seed.user(UserRole.TEACHER)
    setting = await seed.match_setting(ready=False, reference_solution=BROKEN)

    response = await client.post(f"/api/match-settings/{setting.id}/ready", headers=auth_headers(teacher))

    assert response.status_code == 400
    listed = await client.get("/api/match-settings", params={"status_filter": "draft"}, headers=auth_headers(teacher))
    assert [item["id"] for item in listed.json()] == [setting.id]


async def test_create_challenge(client, seed):
    teacher = await seed.user(UserRole.TEACHER)
    setting = await seed.match_setting()
    start = utcnow() + timedelta(days=1)
    payload = {
        "title": "Friday practice",
        "start_datetime": start.isoformat(),
        "end_datetime": (start + timedelta(hours=2)).isoformat(),
        "duration": 45,
        "match_setting_ids": [setting.id],
    }

    created = await client.post("/api/challenges", json=payload, headers=auth_headers(teacher))
    assert created.status_code == 201
    assert created.json()["status"] == ChallengeStatus.PRIVATE.value

    too_short = {**payload, "end_datetime": (start + timedelta(minutes=30)).isoformat()}
    rejected = await client.post("/api/challenges", json=too_short, headers=auth_headers(teacher))
    assert rejected.status_code == 422

    no_settings = {**payload, "match_setting_ids": []}
    missing = await client.post("/api/challenges", json=no_settings, headers=auth_headers(teacher))
    assert missing.status_code == 400
    assert missing.json()["detail"]["code"] == "no_match_settings"


async def test_students_only_see_open_challenges(client, seed):
    student = await seed.user()
    hidden = await seed.challenge(status=ChallengeStatus.PRIVATE)
    visible = await seed.challenge(status=ChallengeStatus.PUBLIC)

    listed = await client.get("/api/challenges", headers=auth_headers(student))
    assert [item["id"] for item in listed.json()] == [visible.id]
    assert (await client.get(f"/api/challenges/{hidden.id}", headers=auth_headers(student))).status_code == 404


async def test_join_flow(client, seed):
    setting = await seed.match_setting()
    challenge = await seed.challenge(settings=[setting])
    student = await seed.user()
    teacher = await seed.user(UserRole.TEACHER)

    first = await client.post(f"/api/challenges/{challenge.id}/join", headers=auth_headers(student))
    again = await client.post(f"/api/challenges/{challenge.id}/join", headers=auth_headers(student))
    assert first.status_code == again.status_code == 200
    assert first.json()["already_joined"] is False
    assert again.json()["already_joined"] is True
    assert again.json()["participant_id"] == first.json()["participant_id"]

    forbidden = await client.post(f"/api/challenges/{challenge.id}/join", headers=auth_headers(teacher))
    assert forbidden.status_code == 403

    participants = await client.get(f"/api/challenges/{challenge.id}/participants", headers=auth_headers(teacher))
    assert [row["student_id"] for row in participants.json()] == [student.id]

    mine = await client.get("/api/users/me/challenges", headers=auth_headers(student))
    assert [item["id"] for item in mine.json()] == [challenge.id]


async def test_private_challenge_cannot_be_joined(client, seed):
    challenge = await seed.challenge(status=ChallengeStatus.PRIVATE)
    student = await seed.user()

    response = await client.post(f"/api/challenges/{challenge.id}/join", headers=auth_headers(student))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "challenge_private"


async def test_assign_route_outcomes(client, seed):
    teacher = await seed.user(UserRole.TEACHER)
    setting = await seed.match_setting()
    early = await seed.challenge(settings=[setting], starts_in=timedelta(hours=1))
    await seed.join(early, await seed.students(2))

    too_early = await client.post(f"/api/challenges/{early.id}/assign", headers=auth_headers(teacher))
    assert too_early.status_code == 400
    assert too_early.json()["detail"]["code"] == "too_early"

    ready = await seed.challenge(settings=[setting])
    await seed.join(ready, await seed.students(2))
    assigned = await client.post(f"/api/challenges/{ready.id}/assign", headers=auth_headers(teacher))
    assert assigned.status_code == 200
    assert assigned.json()["challenge"]["status"] == ChallengeStatus.ASSIGNED.value
    assert sum(len(group["matches"]) for group in assigned.json()["assignments"]) == 2

    repeated = await client.post(f"/api/challenges/{ready.id}/assign", headers=auth_headers(teacher))
    assert repeated.status_code == 409
    assert repeated.json()["detail"]["code"] == "already_assigned"


async def test_start_requires_assignment(client, seed):
    teacher = await seed.user(UserRole.TEACHER)
    challenge = await seed.challenge(settings=[await seed.match_setting()])

    response = await client.post(f"/api/challenges/{challenge.id}/start", headers=auth_headers(teacher))

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_status"


async def test_coding_phase_routes(client, seed, context):
    teacher = await seed.user(UserRole.TEACHER)
    challenge, students = await assigned_challenge(seed, context, student_count=3)
    headers = auth_headers(teacher)

    started = await client.post(f"/api/challenges/{challenge.id}/start", headers=headers)
    assert started.status_code == 200
    assert started.json()["challenge"]["status"] == ChallengeStatus.STARTED_CODING_PHASE.value

    my_match = await client.get(f"/api/challenges/{challenge.id}/my-match", headers=auth_headers(students[0]))
    assert my_match.status_code == 200
    assert "private_tests" not in my_match.json()["match_setting"]
    match_id = my_match.json()["match_id"]

    submitted = await client.post(
        f"/api/matches/{match_id}/submissions",
        json={"code": SOLUTION, "language": "python"},
        headers=auth_headers(students[0]),
    )
    assert submitted.status_code == 200
    assert submitted.json()["is_passed"] is True
    assert submitted.json()["submission"]["is_final"] is True

    ran = await client.post(
        f"/api/matches/{match_id}/run",
        json={"code": SOLUTION, "custom_tests": [{"input": [4, 4], "output": [8]}]},
        headers=auth_headers(students[0]),
    )
    assert ran.status_code == 200
    assert ran.json()["summary"]["total"] == len(PUBLIC_TESTS) + 1

    ended = await client.post(f"/api/challenges/{challenge.id}/end-coding", headers=headers)
    assert ended.status_code == 200
    assert ended.json()["already_ended"] is False
    assert ended.json()["backfilled_submissions"] == 2

    again = await client.post(f"/api/challenges/{challenge.id}/end-coding", headers=headers)
    assert again.status_code == 200
    assert again.json()["already_ended"] is True

    overview = await client.get(f"/api/challenges/{challenge.id}/matches", headers=headers)
    assert overview.status_code == 200
    body = overview.json()
    assert body["pending_final_count"] == 0
    assert body["in_flight_submissions_count"] == 0
    assert body["results_ready"] is True
    assert body["peer_review_ready"] is False
    assert body["peer_review_assignments"] == []

    late = await client.post(
        f"/api/matches/{match_id}/submissions",
        json={"code": SOLUTION},
        headers=auth_headers(students[0]),
    )
    assert late.status_code == 409
    assert late.json()["detail"]["code"] == "phase_closed"


async def test_submission_access_is_limited_to_the_owner(client, seed, context):
    challenge, students = await started_challenge(seed, context, student_count=2)
    owner, other = students
    match_id = await match_id_for(context, challenge.id, owner)

    foreign = await client.post(
        f"/api/matches/{match_id}/submissions",
        json={"code": SOLUTION},
        headers=auth_headers(other),
    )
    assert foreign.status_code == 403

    missing = await client.post(
        "/api/matches/does-not-exist/submissions",
        json={"code": SOLUTION},
        headers=auth_headers(owner),
    )
    assert missing.status_code == 404

    stored = await client.post(f"/api/matches/{match_id}/submissions", json={"code": SOLUTION}, headers=auth_headers(owner))
    submission_id = stored.json()["submission"]["id"]
    assert (await client.get(f"/api/submissions/{submission_id}", headers=auth_headers(owner))).status_code == 200
    assert (await client.get(f"/api/submissions/{submission_id}", headers=auth_headers(other))).status_code == 404


async def test_peer_review_routes_reject_bad_requests(client, seed, context):
    teacher = await seed.user(UserRole.TEACHER)
    challenge, students = await started_challenge(seed, context, student_count=3)
    headers = auth_headers(teacher)
    await client.post(f"/api/challenges/{challenge.id}/end-coding", headers=headers)

    invalid = await client.post(
        f"/api/challenges/{challenge.id}/peer-reviews/assign",
        json={"expected_reviews_per_submission": 1},
        headers=headers,
    )
    assert invalid.status_code == 400
    assert invalid.json()["detail"]["code"] == "invalid_expected_reviews"

    not_started = await client.post(f"/api/challenges/{challenge.id}/peer-reviews/start", headers=headers)
    assert not_started.status_code == 400

    vote = await client.post(
        "/api/peer-reviews/assignments/does-not-exist/vote",
        json={"vote": "correct"},
        headers=auth_headers(students[0]),
    )
    assert vote.status_code == 404

    results = await client.get(f"/api/challenges/{challenge.id}/results", headers=auth_headers(students[0]))
    assert results.status_code == 409


async def test_expected_reviews_can_be_changed_before_peer_review(client, seed):
    teacher = await seed.user(UserRole.TEACHER)
    challenge = await seed.challenge(settings=[await seed.match_setting()])

    updated = await client.patch(
        f"/api/challenges/{challenge.id}/expected-reviews",
        json={"expected_reviews_per_submission": 3},
        headers=auth_headers(teacher),
    )
    assert updated.status_code == 200
    assert updated.json()["allowed_number_of_review"] == 3

    too_low = await client.patch(
        f"/api/challenges/{challenge.id}/expected-reviews",
        json={"expected_reviews_per_submission": 1},
        headers=auth_headers(teacher),
    )
    assert too_low.status_code == 400


async def test_exit_peer_review_route(client, seed, context):
    teacher = await seed.user(UserRole.TEACHER)
    challenge, students = await started_challenge(seed, context, student_count=3)
    finals = {}
    for student in students:
        finals[student.id] = (await submit(context, challenge.id, student, SOLUTION)).data["submission"].id
    await end_coding(context, challenge.id)
    async with context.session_factory() as db:
        await PeerReviewAssignmentService(db, context).assign(challenge.id, expected_reviews=2)
    async with context.session_factory() as db:
        await PhaseTransitionService(db, context).start_peer_review(challenge.id)
    alice, bob, _ = students

    payload = {
        "challenge_id": challenge.id,
        "votes": [{"submission_id": finals[bob.id], "vote": "correct"}],
    }
    forbidden = await client.post("/api/peer-reviews/exit", json=payload, headers=auth_headers(teacher))
    assert forbidden.status_code == 403

    exited = await client.post("/api/peer-reviews/exit", json=payload, headers=auth_headers(alice))
    assert exited.status_code == 200
    assert exited.json() == {"votes_saved": 1, "abstain_votes_created": 1}

    missing = await client.post(
        "/api/peer-reviews/exit",
        json={"challenge_id": "does-not-exist", "votes": []},
        headers=auth_headers(alice),
    )
    assert missing.status_code == 404

    outsider = await client.post(
        "/api/peer-reviews/exit",
        json={"challenge_id": challenge.id},
        headers=auth_headers(await seed.user()),
    )
    assert outsider.status_code == 404
    assert outsider.json()["detail"]["code"] == "participant_not_found"

    ended = await client.post(f"/api/challenges/{challenge.id}/end-peer-review", headers=auth_headers(teacher))
    assert ended.status_code == 200
    closed = await client.post("/api/peer-reviews/exit", json=payload, headers=auth_headers(alice))
    assert closed.status_code == 409
    assert closed.json()["detail"]["code"] == "phase_closed"
