from datetime import timedelta

import pytest

from app.contests.clock import utcnow

ADMIN = {"id": "ADMIN_1", "role": "admin"}

# ==================== AUTH ====================

async def test_missing_or_bad_token_is_unauthorized(client, auth):
    assert (await client.get("/student/stats")).status_code == 401
    response = await client.get("/student/stats", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or Expired Token"


async def test_wrong_role_is_forbidden(client, seed, auth):
    student = await seed.user()
    response = await client.get("/admin/stats", headers=auth(student))
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied"

# ==================== PUBLIC CATALOGUE ====================

async def test_catalogue_uses_computed_status(client, seed):
    live = await seed.contest(title="Live now", status="upcoming")
    upcoming = await seed.contest(title="Tomorrow", starts_in=timedelta(days=1))
    await seed.contest(title="Last week", starts_in=timedelta(days=-7))
    await seed.registration(live, await seed.user())

    contests = (await client.get("/contests")).json()
    by_title = {c["title"]: c for c in contests}
    assert by_title["Live now"]["status"] == "live"
    assert by_title["Live now"]["participantCount"] == 1
    assert by_title["Tomorrow"]["status"] == "upcoming"
    assert by_title["Last week"]["status"] == "completed"

    filtered = (await client.get("/contests", params={"status": "upcoming"})).json()
    assert [c["id"] for c in filtered] == [upcoming["id"]]

    completed = (await client.get("/contests/completed")).json()
    assert [c["title"] for c in completed] == ["Last week"]

    count = (await client.get(f"/contests/{live['id']}/registrations-count")).json()
    assert count == {"count": 1}


async def test_contest_detail_includes_callers_registration(client, seed, auth):
    contest = await seed.contest()
    await seed.question(contest)
    student = await seed.user()
    registration = await seed.registration(contest, student, status="pending")

    anonymous = (await client.get(f"/contests/{contest['id']}")).json()
    assert anonymous["status"] == "live"
    assert anonymous["questionsCount"] == 1
    assert anonymous["registration"] is None

    mine = (await client.get(f"/contests/{contest['id']}", headers=auth(student))).json()
    assert mine["registration"]["id"] == registration["id"]

    assert (await client.get("/contests/CONTEST_NOPE")).status_code == 404

# ==================== STUDENT FLOW ====================

@pytest.mark.parametrize("status, starts_in, code", [
    (None, timedelta(hours=-1), "NOT_REGISTERED"),
    ("pending", timedelta(hours=-1), "NOT_APPROVED"),
    ("approved", timedelta(hours=1), "NOT_STARTED"),
    ("approved", timedelta(hours=-5), "CONTEST_ENDED"),
])
async def test_question_read_denials_are_distinct(client, seed, auth, status, starts_in, code):
    contest = await seed.contest(starts_in=starts_in)
    student = await seed.user()
    if status:
        await seed.registration(contest, student, status=status)

    response = await client.get(f"/student/contests/{contest['id']}/questions", headers=auth(student))

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == code


async def test_questions_never_include_answer_keys(client, seed, auth):
    contest = await seed.contest()
    await seed.question(contest, explanation="B is right", order=2)
    await seed.question(contest, questionText="First", order=1)
    student = await seed.user()
    await seed.registration(contest, student)

    body = (await client.get(f"/student/contests/{contest['id']}/questions", headers=auth(student))).json()

    assert body["contest"]["status"] == "live"
    assert [q["questionText"] for q in body["questions"]] == ["First", "Pick one"]
    assert all("correctAnswer" not in q and "explanation" not in q for q in body["questions"])


async def test_register_start_submit_publish(client, seed, auth, db):
    contest = await seed.contest(starts_in=timedelta(days=1), fee=99)
    question = await seed.question(contest)
    student = await seed.user(name="Asha")

    registered = await client.post(f"/student/register/{contest['id']}", json={}, headers=auth(student))
    assert registered.status_code == 200
    again = await client.post(f"/student/register/{contest['id']}", json={}, headers=auth(student))
    assert again.status_code == 400
    assert again.json()["detail"]["code"] == "ALREADY_REGISTERED"

    approve = await client.post(f"/admin/payments/{registered.json()['id']}/approve", headers=auth(ADMIN))
    assert approve.json()["paymentStatus"] == "approved"

    # open the contest window
    await db.contests.update_one(
        {"id": contest["id"]},
        {"$set": {"startTime": utcnow() - timedelta(minutes=5), "endTime": utcnow() + timedelta(hours=1)}},
    )

    started = (await client.post(f"/student/contests/{contest['id']}/start", headers=auth(student))).json()
    restarted = (await client.post(f"/student/contests/{contest['id']}/start", headers=auth(student))).json()
    assert started["id"] == restarted["id"]

    submitted = await client.post(
        f"/student/contests/{contest['id']}/submit",
        json={"answers": {question["id"]: "B"}, "tabSwitchCount": 1},
        headers=auth(student),
    )
    body = submitted.json()
    assert body["message"] == "Submission successful"
    assert body["result"]["score"] == 10
    assert body["questionResults"][question["id"]] == {"correct": True, "marks": 10}

    # graded but unpublished: invisible everywhere students look
    assert (await client.get(f"/contests/{contest['id']}/results")).json() == []
    assert (await client.get("/student/results", headers=auth(student))).json() == []
    hidden = (await client.get(f"/admin/contests/{contest['id']}/results", headers=auth(ADMIN))).json()
    assert len(hidden) == 1

    published = await client.post(
        f"/admin/contests/{contest['id']}/publish-results",
        json={"prizes": [{"userId": student["id"], "prize": 150}]},
        headers=auth(ADMIN),
    )
    assert published.json()["contest"]["status"] == "completed"

    public = (await client.get(f"/contests/{contest['id']}/results")).json()
    assert [(r["userName"], r["rank"], r["prize"], r["isWinner"]) for r in public] == [("Asha", 1, 150, True)]
    assert "userEmail" not in public[0]

    mine = (await client.get("/student/results", headers=auth(student))).json()
    assert mine[0]["contestTitle"] == contest["title"]

    stats = (await client.get("/student/stats", headers=auth(student))).json()
    assert stats == {"contestsJoined": 1, "upcomingContests": 0, "totalWinnings": 150, "bestRank": 1}

    registrations = (await client.get("/student/registrations", headers=auth(student))).json()
    assert registrations[0]["action"] == "submitted"
    assert registrations[0]["attempt"]["submittedAt"] is not None


async def test_submit_just_after_end_is_rejected(client, seed, auth):
    contest = await seed.contest(starts_in=-timedelta(hours=1, seconds=30), lasts=timedelta(hours=1))
    student = await seed.user()
    await seed.registration(contest, student)

    response = await client.post(
        f"/student/contests/{contest['id']}/submit",
        json={"answers": {}, "tabSwitchCount": 0},
        headers=auth(student),
    )
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "CONTEST_ENDED"


async def test_negative_tab_switch_count_is_invalid(client, seed, auth):
    contest = await seed.contest()
    student = await seed.user()
    await seed.registration(contest, student)

    response = await client.post(
        f"/student/contests/{contest['id']}/submit",
        json={"answers": {}, "tabSwitchCount": -1},
        headers=auth(student),
    )
    assert response.status_code == 422

# ==================== ADMIN ====================

async def test_contest_validation_and_status_is_not_editable(client, auth):
    start = utcnow() + timedelta(days=2)
    payload = {
        "title": "Grand Hackathon",
        "type": "short_answer",
        "category": "hackathon",
        "startTime": start.isoformat() + "Z",
        "endTime": (start - timedelta(hours=1)).isoformat() + "Z",
        "duration": 60,
        "totalMarks": 100,
    }
    assert (await client.post("/admin/contests", json=payload, headers=auth(ADMIN))).status_code == 422

    payload["endTime"] = (start + timedelta(hours=3)).isoformat() + "Z"
    payload["negativeMarkValue"] = 1.5
    assert (await client.post("/admin/contests", json=payload, headers=auth(ADMIN))).status_code == 422

    payload["negativeMarkValue"] = 0.25
    created = (await client.post("/admin/contests", json=payload, headers=auth(ADMIN))).json()
    assert created["status"] == "upcoming"

    patched = await client.patch(
        f"/admin/contests/{created['id']}",
        json={"status": "completed", "title": "Grand Hackathon II"},
        headers=auth(ADMIN),
    )
    assert patched.json()["title"] == "Grand Hackathon II"
    assert patched.json()["status"] == "upcoming"

    bad_window = await client.patch(
        f"/admin/contests/{created['id']}",
        json={"endTime": (start - timedelta(days=1)).isoformat() + "Z"},
        headers=auth(ADMIN),
    )
    assert bad_window.status_code == 400


async def test_question_answer_keys_are_checked(client, seed, auth):
    contest = await seed.contest(type="integer")
    url = f"/admin/contests/{contest['id']}/questions"

    mcq = {"type": "mcq", "questionText": "2+2?", "options": ["3", "4"], "correctAnswer": "5", "marks": 4}
    assert (await client.post(url, json=mcq, headers=auth(ADMIN))).status_code == 422

    inherited = {"questionText": "2+2?", "correctAnswer": "four", "marks": 4}
    response = await client.post(url, json=inherited, headers=auth(ADMIN))
    assert response.status_code == 400

    inherited["correctAnswer"] = "4"
    created = (await client.post(url, json=inherited, headers=auth(ADMIN))).json()
    assert created["type"] == "integer"

    assert (await client.post(url, json={**inherited, "marks": 0}, headers=auth(ADMIN))).status_code == 422

    patched = await client.patch(f"/admin/questions/{created['id']}", json={"correctAnswer": "x"}, headers=auth(ADMIN))
    assert patched.status_code == 400

    assert (await client.delete(f"/admin/contests/{contest['id']}", headers=auth(ADMIN))).json() == {"success": True}
    assert (await client.get(url, headers=auth(ADMIN))).json() == []


async def test_payment_review_is_one_way(client, seed, auth):
    contest = await seed.contest(starts_in=timedelta(days=1))
    student = await seed.user()
    registration = await seed.registration(contest, student, status="pending")

    pending = (await client.get("/admin/payments/pending", headers=auth(ADMIN))).json()
    assert pending[0]["user"]["id"] == student["id"]
    assert pending[0]["contest"]["id"] == contest["id"]

    rejected = await client.post(f"/admin/payments/{registration['id']}/reject", headers=auth(ADMIN))
    assert rejected.json()["paymentStatus"] == "rejected"

    approved = await client.post(f"/admin/payments/{registration['id']}/approve", headers=auth(ADMIN))
    assert approved.status_code == 409
    assert (await client.post("/admin/payments/REG_NOPE/approve", headers=auth(ADMIN))).status_code == 404


async def test_admin_stats(client, seed, auth):
    live = await seed.contest(fee=100)
    await seed.contest(starts_in=timedelta(days=1), fee=40)
    await seed.user(role="creator", referralCode="CRT1")
    first, second = await seed.user(), await seed.user()
    await seed.registration(live, first)
    await seed.registration(live, second, status="pending")

    stats = (await client.get("/admin/stats", headers=auth(ADMIN))).json()
    assert stats == {
        "totalStudents": 2,
        "totalContests": 2,
        "activeContests": 1,
        "totalRevenue": 100,
        "pendingPayments": 1,
        "totalCreators": 1,
    }

# ==================== CREATOR ====================

async def test_withdrawals_need_minimum_balance(client, seed, auth, db):
    creator = await seed.user(role="creator", referralCode="CRT-ASHA")
    request = {"amount": 200, "paymentMethod": "upi", "upiId": "asha@upi"}

    low = await client.post("/creator/withdrawals", json=request, headers=auth(creator))
    assert low.status_code == 400

    contest = await seed.contest(commissionPerRegistration=100)
    for _ in range(4):
        registration = await seed.registration(contest, await seed.user(), status="pending", referralCode="CRT-ASHA")
        await client.post(f"/admin/payments/{registration['id']}/approve", headers=auth(ADMIN))

    stats = (await client.get("/creator/stats", headers=auth(creator))).json()
    assert stats["totalEarnings"] == 400
    assert stats["availableBalance"] == 400

    too_much = await client.post("/creator/withdrawals", json={**request, "amount": 450}, headers=auth(creator))
    assert too_much.status_code == 400

    missing_target = await client.post("/creator/withdrawals", json={"amount": 100, "paymentMethod": "bank"}, headers=auth(creator))
    assert missing_target.status_code == 422

    withdrawal = (await client.post("/creator/withdrawals", json=request, headers=auth(creator))).json()
    assert withdrawal["status"] == "pending"

    stats = (await client.get("/creator/stats", headers=auth(creator))).json()
    assert (stats["pendingWithdrawals"], stats["availableBalance"]) == (200, 200)

    processed = (await client.post(f"/admin/withdrawals/{withdrawal['id']}/approve", headers=auth(ADMIN))).json()
    assert processed["status"] == "approved"
    assert processed["processedAt"] is not None

    recent = (await client.get("/creator/earnings/recent", headers=auth(creator))).json()
    assert len(recent) == 4
    assert (await client.get("/creator/withdrawals", headers=auth(creator))).json()[0]["id"] == withdrawal["id"]


async def test_withdrawal_review_is_one_way(client, seed, auth, db):
    creator = await seed.user(role="creator", referralCode="CRT-RAVI")
    await db.withdrawals.insert_one({
        "id": "WD_1", "creatorId": creator["id"], "amount": 300, "paymentMethod": "upi",
        "upiId": "ravi@upi", "status": "pending", "requestedAt": utcnow(),
    })

    approved = await client.post("/admin/withdrawals/WD_1/approve", headers=auth(ADMIN))
    assert approved.json()["status"] == "approved"

    rejected = await client.post("/admin/withdrawals/WD_1/reject", headers=auth(ADMIN))
    assert rejected.status_code == 409
    assert (await db.withdrawals.find_one({"id": "WD_1"}))["status"] == "approved"
    assert (await client.post("/admin/withdrawals/WD_NOPE/approve", headers=auth(ADMIN))).status_code == 404
