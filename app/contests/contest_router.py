from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from app.contests.clock import utcnow
from app.contests.database import (
    count_questions, count_registrations, get_contest, get_results,
    get_user_registration, list_contests
)
from app.contests.dependencies import UserContext, get_db, get_optional_user
from app.contests.models import ContestStatus
from app.contests.publication import enrich_results
from app.contests.status import with_status

router = APIRouter(tags=["Contests"])

# ==================== CATALOGUE ====================

async def list_contests_with_status(db: AsyncIOMotorDatabase, status: Optional[str] = None) -> list:
    """Newest first, each with its computed status and participant count"""
    now = utcnow()
    contests = [with_status(c, now) for c in await list_contests(db)]
    if status:
        contests = [c for c in contests if c["status"] == status]

    counts = await count_registrations(db, [c["id"] for c in contests])
    for contest in contests:
        contest["participantCount"] = counts.get(contest["id"], 0)
    return contests


@router.get("")
async def list_contests_endpoint(
    status: Optional[ContestStatus] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    return await list_contests_with_status(db, status.value if status else None)


@router.get("/completed")
async def list_completed_contests(db: AsyncIOMotorDatabase = Depends(get_db)):
    return await list_contests_with_status(db, ContestStatus.COMPLETED.value)


@router.get("/{contest_id}")
async def get_contest_endpoint(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: Optional[UserContext] = Depends(get_optional_user)
):
    """Contest with computed status, question count and the caller's registration"""
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")

    registration = None
    if user:
        registration = await get_user_registration(db, user.user_id, contest_id)

    return {
        **with_status(contest),
        "questionsCount": await count_questions(db, contest_id),
        "registration": registration,
    }


@router.get("/{contest_id}/registrations-count")
async def registrations_count(contest_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    counts = await count_registrations(db, [contest_id])
    return {"count": counts.get(contest_id, 0)}

# ==================== RESULTS ====================

@router.get("/{contest_id}/results")
async def contest_results(contest_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Published results only, in rank order"""
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")

    results = await get_results(db, contest_id=contest_id, published_only=True)
    return await enrich_results(db, results)
