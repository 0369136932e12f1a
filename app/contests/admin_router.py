import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.clock import as_utc, utcnow
from app.contests.commission import approve_payment, reject_payment, retry_commission
from app.contests.database import (
    create_contest, create_question, delete_contest, delete_question, get_contest,
    get_question, get_questions, get_registration, get_results, get_users_by_ids,
    get_withdrawal, list_contests, list_registrations, list_withdrawals, process_withdrawal,
    update_contest, update_question
)
from app.contests.dependencies import UserContext, get_current_admin, get_db
from app.contests.models import (
    ContestCreate, ContestStatus, ContestUpdate, PaymentStatus, PublishRequest,
    QuestionCreate, QuestionUpdate, UserRole, WithdrawalStatus, check_answer_key
)
from app.contests.publication import enrich_results, publish_results
from app.contests.status import with_status

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])

# ==================== CONTESTS ====================

@router.get("/contests")
async def admin_list_contests(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    now = utcnow()
    return [with_status(c, now) for c in await list_contests(db)]


@router.post("/contests")
async def admin_create_contest(
    payload: ContestCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    contest = await create_contest(db, payload.dict())
    logger.info("Contest %s created by %s", contest["id"], admin.user_id)
    return with_status(contest)


@router.get("/contests/{contest_id}")
async def admin_get_contest(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")
    return with_status(contest)


@router.patch("/contests/{contest_id}")
async def admin_update_contest(
    contest_id: str,
    payload: ContestUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    """Status is not editable here; only publication completes a contest"""
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")

    updates = {k: v for k, v in payload.dict().items() if v is not None}

    start = as_utc(updates.get("startTime", contest.get("startTime")))
    end = as_utc(updates.get("endTime", contest.get("endTime")))
    if start and end and end <= start:
        raise HTTPException(status_code=400, detail="endTime must be after startTime")

    updated = await update_contest(db, contest_id, updates)
    return with_status(updated)


@router.delete("/contests/{contest_id}")
async def admin_delete_contest(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    if not await delete_contest(db, contest_id):
        raise HTTPException(status_code=404, detail="Contest not found")
    logger.info("Contest %s deleted by %s", contest_id, admin.user_id)
    return {"success": True}

# ==================== QUESTIONS ====================

@router.get("/contests/{contest_id}/questions")
async def admin_list_questions(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    """Full questions, answer keys included"""
    return await get_questions(db, contest_id)


@router.post("/contests/{contest_id}/questions")
async def admin_create_question(
    contest_id: str,
    payload: QuestionCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")

    data = payload.dict()
    data["type"] = data.get("type") or contest.get("type")
    try:
        check_answer_key(data["type"], data.get("options"), data.get("correctAnswer"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await create_question(db, contest_id, data)


@router.patch("/questions/{question_id}")
async def admin_update_question(
    question_id: str,
    payload: QuestionUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    question = await get_question(db, question_id)
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")

    updates = {k: v for k, v in payload.dict().items() if v is not None}
    merged = {**question, **updates}
    try:
        check_answer_key(merged.get("type"), merged.get("options"), merged.get("correctAnswer"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return await update_question(db, question_id, updates)


@router.delete("/questions/{question_id}")
async def admin_delete_question(
    question_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    if not await delete_question(db, question_id):
        raise HTTPException(status_code=404, detail="Question not found")
    return {"success": True}

# ==================== RESULTS ====================

@router.get("/contests/{contest_id}/results")
async def admin_contest_results(
    contest_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    """Every result, published or not"""
    results = await get_results(db, contest_id=contest_id)
    return await enrich_results(db, results, include_email=True)


@router.post("/contests/{contest_id}/publish-results")
async def admin_publish_results(
    contest_id: str,
    payload: Optional[PublishRequest] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    contest = await get_contest(db, contest_id)
    if not contest:
        raise HTTPException(status_code=404, detail="Contest not found")

    try:
        return await publish_results(db, contest, payload.prizes if payload else None)
    except Exception:
        logger.exception("Publishing failed for contest %s", contest_id)
        raise HTTPException(status_code=500, detail="Results could not be published")

# ==================== PAYMENTS ====================

async def enrich_registrations(db: AsyncIOMotorDatabase, registrations: list) -> list:
    users = await get_users_by_ids(db, [r["userId"] for r in registrations])
    contests = {}
    enriched = []
    for registration in registrations:
        contest_id = registration["contestId"]
        if contest_id not in contests:
            contests[contest_id] = await get_contest(db, contest_id)
        enriched.append({
            **registration,
            "user": users.get(registration["userId"]),
            "contest": contests[contest_id],
        })
    return enriched


@router.get("/payments")
async def admin_payments(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    return await enrich_registrations(db, await list_registrations(db))


@router.get("/payments/pending")
async def admin_pending_payments(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    """The five newest pending payments"""
    pending = await list_registrations(db, {"paymentStatus": PaymentStatus.PENDING.value}, limit=5)
    return await enrich_registrations(db, pending)


@router.post("/payments/{registration_id}/approve")
async def admin_approve_payment(
    registration_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    return await approve_payment(db, registration_id)


@router.post("/payments/{registration_id}/reject")
async def admin_reject_payment(
    registration_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    return await reject_payment(db, registration_id)


@router.post("/payments/{registration_id}/commission")
async def admin_retry_commission(
    registration_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    """Re-run the commission trigger for an approved registration"""
    try:
        earning = await retry_commission(db, registration_id)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Commission retry failed for registration %s", registration_id)
        raise HTTPException(status_code=500, detail="Commission could not be recorded")

    return {
        "registration": await get_registration(db, registration_id),
        "earning": earning,
    }

# ==================== WITHDRAWALS ====================

@router.get("/withdrawals")
async def admin_withdrawals(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    withdrawals = await list_withdrawals(db)
    creators = await get_users_by_ids(db, [w["creatorId"] for w in withdrawals])
    return [{**w, "creator": creators.get(w["creatorId"])} for w in withdrawals]


async def _process(db: AsyncIOMotorDatabase, withdrawal_id: str, status: WithdrawalStatus) -> dict:
    withdrawal = await process_withdrawal(db, withdrawal_id, status)
    if not withdrawal:
        existing = await get_withdrawal(db, withdrawal_id)
        if not existing:
            raise HTTPException(status_code=404, detail="Withdrawal not found")
        raise HTTPException(status_code=409, detail=f"Withdrawal already {existing.get('status')}")
    logger.info("Withdrawal %s %s", withdrawal_id, status.value)
    return withdrawal


@router.post("/withdrawals/{withdrawal_id}/approve")
async def admin_approve_withdrawal(
    withdrawal_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    return await _process(db, withdrawal_id, WithdrawalStatus.APPROVED)


@router.post("/withdrawals/{withdrawal_id}/reject")
async def admin_reject_withdrawal(
    withdrawal_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    return await _process(db, withdrawal_id, WithdrawalStatus.REJECTED)

# ==================== DASHBOARD ====================

@router.get("/stats")
async def admin_stats(
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(get_current_admin)
):
    now = utcnow()
    contests = await list_contests(db)
    fees = {c["id"]: c.get("fee") or 0 for c in contests}
    approved = await list_registrations(db, {"paymentStatus": PaymentStatus.APPROVED.value})

    return {
        "totalStudents": await db.users.count_documents({"role": UserRole.STUDENT.value}),
        "totalContests": len(contests),
        "activeContests": sum(1 for c in contests if with_status(c, now)["status"] == ContestStatus.LIVE.value),
        "totalRevenue": sum(fees.get(r["contestId"], 0) for r in approved),
        "pendingPayments": await db.registrations.count_documents({"paymentStatus": PaymentStatus.PENDING.value}),
        "totalCreators": await db.users.count_documents({"role": UserRole.CREATOR.value}),
    }
