"""
Student endpoints
Registration, the gated question read, attempt start and submission, plus the
student's own registrations, published results and stats.
"""

import logging

from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.access import ensure_can_submit, ensure_question_access, register_for_contest
from app.contests.clock import utcnow
from app.contests.database import (
    get_contest, get_questions, get_results, get_user_attempt,
    get_user_registration, insert_attempt, list_contests, list_registrations
)
from app.contests.dependencies import UserContext, get_current_student, get_db
from app.contests.grading import submit_answers
from app.contests.models import ContestStatus, PaymentStatus, RegistrationCreate, SubmissionCreate
from app.contests.status import contest_card_action, with_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Student"])

# answer keys never leave the server before grading
HIDDEN_QUESTION_FIELDS = ("correctAnswer", "explanation")


def strip_answer_key(question: dict) -> dict:
    return {k: v for k, v in question.items() if k not in HIDDEN_QUESTION_FIELDS}


async def load_contest(db: AsyncIOMotorDatabase, contest_id: str) -> dict:
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")
    return contest

# ==================== REGISTRATION ====================

@router.post("/register/{contest_id}")
async def register_endpoint(
    contest_id: str,
    payload: RegistrationCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    contest = await load_contest(db, contest_id)
    return await register_for_contest(db, contest, user.user_id, payload)


@router.get("/registrations")
async def my_registrations(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    """Each registration with its contest, attempt and the card action"""
    now = utcnow()
    registrations = await list_registrations(db, {"userId": user.user_id})

    enriched = []
    for registration in registrations:
        contest = await get_contest(db, registration["contestId"])
        if not contest:
            continue
        contest = with_status(contest, now)
        attempt = await get_user_attempt(db, user.user_id, contest["id"])
        enriched.append({
            **registration,
            "contest": contest,
            "attempt": attempt,
            "action": contest_card_action(contest["status"], registration, attempt).value,
        })
    return enriched

# ==================== ATTEMPT ====================

@router.get("/contests/{contest_id}/questions")
async def contest_questions(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    contest = await load_contest(db, contest_id)
    registration = await get_user_registration(db, user.user_id, contest_id)

    now = utcnow()
    ensure_question_access(registration, contest, now)

    questions = await get_questions(db, contest_id)
    return {
        "contest": with_status(contest, now),
        "questions": [strip_answer_key(q) for q in questions],
        "registration": registration,
    }


@router.post("/contests/{contest_id}/start")
async def start_attempt(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    """Creates the attempt on first call; later calls return the same one"""
    contest = await load_contest(db, contest_id)
    registration = await get_user_registration(db, user.user_id, contest_id)
    ensure_question_access(registration, contest)

    attempt, created = await insert_attempt(db, contest_id, user.user_id)
    if created:
        logger.info("Attempt %s started: contest=%s user=%s", attempt["id"], contest_id, user.user_id)
    return attempt


@router.post("/contests/{contest_id}/submit")
async def submit_contest(
    contest_id: str,
    submission: SubmissionCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    contest = await load_contest(db, contest_id)
    registration = await get_user_registration(db, user.user_id, contest_id)

    now = utcnow()
    ensure_can_submit(registration, contest, now)

    questions = await get_questions(db, contest_id)
    try:
        return await submit_answers(db, contest, questions, user.user_id, submission, now)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Grading failed: contest=%s user=%s", contest_id, user.user_id)
        raise HTTPException(status_code=500, detail="Submission could not be graded")

# ==================== RESULTS & STATS ====================

@router.get("/results")
async def my_results(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    results = await get_results(db, user_id=user.user_id, published_only=True)

    enriched = []
    for result in results:
        contest = await get_contest(db, result["contestId"]) or {}
        enriched.append({
            **result,
            "contestTitle": contest.get("title"),
            "contestCategory": contest.get("category"),
        })
    return enriched


@router.get("/stats")
async def my_stats(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_student)
):
    approved = await list_registrations(
        db, {"userId": user.user_id, "paymentStatus": PaymentStatus.APPROVED.value}
    )
    approved_ids = {r["contestId"] for r in approved}

    now = utcnow()
    upcoming = sum(
        1 for c in await list_contests(db)
        if c["id"] in approved_ids and with_status(c, now)["status"] == ContestStatus.UPCOMING.value
    )

    results = await get_results(db, user_id=user.user_id, published_only=True)
    ranks = [r["rank"] for r in results if r.get("rank")]

    return {
        "contestsJoined": len(approved),
        "upcomingContests": upcoming,
        "totalWinnings": sum(r.get("prize") or 0 for r in results),
        "bestRank": min(ranks) if ranks else None,
    }
