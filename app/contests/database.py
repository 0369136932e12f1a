import logging
import uuid
from typing import List, Optional, Dict, Any, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.contests.clock import utcnow
from app.contests.models import PaymentStatus, WithdrawalStatus

logger = logging.getLogger(__name__)

# Never hand Mongo's ObjectId to callers
NO_ID = {"_id": 0}


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12].upper()}"


# ==================== INDEXES ====================

async def create_contest_indexes(db: AsyncIOMotorDatabase):
    """Create MongoDB indexes, including the per-(user, contest) uniqueness guards"""
    await db.users.create_index("id", unique=True)
    await db.users.create_index("referralCode")

    await db.contests.create_index("id", unique=True)
    await db.contests.create_index("createdAt")

    await db.questions.create_index("id", unique=True)
    await db.questions.create_index([("contestId", 1), ("order", 1)])

    await db.registrations.create_index("id", unique=True)
    await db.registrations.create_index([("userId", 1), ("contestId", 1)], unique=True)
    await db.registrations.create_index([("paymentStatus", 1), ("registeredAt", -1)])

    await db.attempts.create_index("id", unique=True)
    await db.attempts.create_index([("userId", 1), ("contestId", 1)], unique=True)

    await db.results.create_index("id", unique=True)
    await db.results.create_index([("userId", 1), ("contestId", 1)], unique=True)
    await db.results.create_index([("contestId", 1), ("publishedAt", 1)])

    await db.earnings.create_index("id", unique=True)
    await db.earnings.create_index("registrationId", unique=True)
    await db.earnings.create_index([("creatorId", 1), ("earnedAt", -1)])

    await db.withdrawals.create_index("id", unique=True)
    await db.withdrawals.create_index([("creatorId", 1), ("status", 1)])

    logger.info("Contest system indexes created")


async def _insert_if_absent(collection, key: Dict[str, Any], doc: Dict[str, Any]) -> Tuple[dict, bool]:
    """
    Atomic compare-and-insert keyed by `key`.
    Returns (document, created). A racing upsert that loses on the unique
    index reads back the winner's document.
    """
    try:
        before = await collection.find_one_and_update(
            key,
            {"$setOnInsert": doc},
            upsert=True,
            projection=NO_ID,
            return_document=ReturnDocument.BEFORE,
        )
    except DuplicateKeyError:
        before = await collection.find_one(key, NO_ID)
        if before is None:
            raise

    if before is not None:
        return before, False

    created = await collection.find_one(key, NO_ID)
    return created, True


# ==================== USERS ====================

async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
    return await db.users.find_one({"id": user_id}, NO_ID)


async def get_users_by_ids(db: AsyncIOMotorDatabase, user_ids: List[str]) -> Dict[str, dict]:
    if not user_ids:
        return {}
    cursor = db.users.find({"id": {"$in": list(set(user_ids))}}, NO_ID)
    return {u["id"]: u for u in await cursor.to_list(length=None)}


async def get_creator_by_referral_code(db: AsyncIOMotorDatabase, referral_code: str) -> Optional[dict]:
    return await db.users.find_one({"role": "creator", "referralCode": referral_code}, NO_ID)


# ==================== CONTESTS ====================

async def create_contest(db: AsyncIOMotorDatabase, contest_data: dict) -> dict:
    contest = {
        **contest_data,
        "id": generate_id("CONTEST"),
        "status": "upcoming",
        "createdAt": utcnow(),
    }
    await db.contests.insert_one(contest)
    contest.pop("_id", None)
    return contest


async def get_contest(db: AsyncIOMotorDatabase, contest_id: str) -> Optional[dict]:
    """Raw stored contest; callers run it through the status resolver"""
    return await db.contests.find_one({"id": contest_id}, NO_ID)


async def list_contests(db: AsyncIOMotorDatabase, limit: Optional[int] = None) -> List[dict]:
    cursor = db.contests.find({}, NO_ID).sort("createdAt", -1)
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list(length=limit)


async def update_contest(db: AsyncIOMotorDatabase, contest_id: str, updates: dict) -> Optional[dict]:
    if not updates:
        return await get_contest(db, contest_id)
    return await db.contests.find_one_and_update(
        {"id": contest_id},
        {"$set": updates},
        projection=NO_ID,
        return_document=ReturnDocument.AFTER,
    )


async def mark_contest_completed(db: AsyncIOMotorDatabase, contest_id: str) -> Optional[dict]:
    """The only write to the stored status field after creation"""
    return await update_contest(db, contest_id, {"status": "completed"})


async def delete_contest(db: AsyncIOMotorDatabase, contest_id: str) -> bool:
    result = await db.contests.delete_one({"id": contest_id})
    if result.deleted_count:
        await db.questions.delete_many({"contestId": contest_id})
        return True
    return False


async def count_registrations(db: AsyncIOMotorDatabase, contest_ids: List[str]) -> Dict[str, int]:
    counts = {cid: 0 for cid in contest_ids}
    cursor = db.registrations.find({"contestId": {"$in": contest_ids}}, {"_id": 0, "contestId": 1})
    for reg in await cursor.to_list(length=None):
        counts[reg["contestId"]] = counts.get(reg["contestId"], 0) + 1
    return counts


# ==================== QUESTIONS ====================

async def create_question(db: AsyncIOMotorDatabase, contest_id: str, question_data: dict) -> dict:
    question = {**question_data, "id": generate_id("Q"), "contestId": contest_id}
    await db.questions.insert_one(question)
    question.pop("_id", None)
    return question


async def get_questions(db: AsyncIOMotorDatabase, contest_id: str) -> List[dict]:
    cursor = db.questions.find({"contestId": contest_id}, NO_ID).sort("order", 1)
    return await cursor.to_list(length=None)


async def count_questions(db: AsyncIOMotorDatabase, contest_id: str) -> int:
    return await db.questions.count_documents({"contestId": contest_id})


async def get_question(db: AsyncIOMotorDatabase, question_id: str) -> Optional[dict]:
    return await db.questions.find_one({"id": question_id}, NO_ID)


async def update_question(db: AsyncIOMotorDatabase, question_id: str, updates: dict) -> Optional[dict]:
    if not updates:
        return await get_question(db, question_id)
    return await db.questions.find_one_and_update(
        {"id": question_id},
        {"$set": updates},
        projection=NO_ID,
        return_document=ReturnDocument.AFTER,
    )


async def delete_question(db: AsyncIOMotorDatabase, question_id: str) -> bool:
    result = await db.questions.delete_one({"id": question_id})
    return result.deleted_count > 0


# ==================== REGISTRATIONS ====================

async def insert_registration(
    db: AsyncIOMotorDatabase,
    contest_id: str,
    user_id: str,
    referral_code: Optional[str] = None,
    payment_screenshot: Optional[str] = None
) -> Tuple[dict, bool]:
    """Create the registration unless (userId, contestId) already has one"""
    registration = {
        "id": generate_id("REG"),
        "contestId": contest_id,
        "userId": user_id,
        "paymentStatus": PaymentStatus.PENDING.value,
        "registeredAt": utcnow(),
    }
    if referral_code:
        registration["referralCode"] = referral_code
    if payment_screenshot:
        registration["paymentScreenshot"] = payment_screenshot

    return await _insert_if_absent(
        db.registrations,
        {"userId": user_id, "contestId": contest_id},
        registration,
    )


async def get_registration(db: AsyncIOMotorDatabase, registration_id: str) -> Optional[dict]:
    return await db.registrations.find_one({"id": registration_id}, NO_ID)


async def get_user_registration(db: AsyncIOMotorDatabase, user_id: str, contest_id: str) -> Optional[dict]:
    return await db.registrations.find_one({"userId": user_id, "contestId": contest_id}, NO_ID)


async def list_registrations(
    db: AsyncIOMotorDatabase,
    filters: Optional[dict] = None,
    limit: Optional[int] = None
) -> List[dict]:
    cursor = db.registrations.find(filters or {}, NO_ID).sort("registeredAt", -1)
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list(length=limit)


async def transition_payment(
    db: AsyncIOMotorDatabase,
    registration_id: str,
    new_status: PaymentStatus
) -> Optional[dict]:
    """
    Move a pending registration to approved/rejected.
    Returns None if the registration is missing or no longer pending.
    """
    updates = {"paymentStatus": new_status.value}
    if new_status == PaymentStatus.APPROVED:
        updates["approvedAt"] = utcnow()

    return await db.registrations.find_one_and_update(
        {"id": registration_id, "paymentStatus": PaymentStatus.PENDING.value},
        {"$set": updates},
        projection=NO_ID,
        return_document=ReturnDocument.AFTER,
    )


# ==================== ATTEMPTS ====================

async def insert_attempt(db: AsyncIOMotorDatabase, contest_id: str, user_id: str) -> Tuple[dict, bool]:
    attempt = {
        "id": generate_id("ATT"),
        "contestId": contest_id,
        "userId": user_id,
        "answers": {},
        "startedAt": utcnow(),
        "autoSubmitted": False,
        "tabSwitchCount": 0,
    }
    return await _insert_if_absent(
        db.attempts,
        {"userId": user_id, "contestId": contest_id},
        attempt,
    )


async def get_user_attempt(db: AsyncIOMotorDatabase, user_id: str, contest_id: str) -> Optional[dict]:
    return await db.attempts.find_one({"userId": user_id, "contestId": contest_id}, NO_ID)


async def close_attempt(db: AsyncIOMotorDatabase, attempt_id: str, updates: dict) -> Optional[dict]:
    """Stamp submission fields once; a closed attempt is left untouched"""
    return await db.attempts.find_one_and_update(
        {"id": attempt_id, "submittedAt": None},
        {"$set": updates},
        projection=NO_ID,
        return_document=ReturnDocument.AFTER,
    )


# ==================== RESULTS ====================

async def insert_result(db: AsyncIOMotorDatabase, result_data: dict) -> Tuple[dict, bool]:
    result = {**result_data, "id": generate_id("RES"), "rank": 0}
    return await _insert_if_absent(
        db.results,
        {"userId": result["userId"], "contestId": result["contestId"]},
        result,
    )


async def get_results(
    db: AsyncIOMotorDatabase,
    contest_id: Optional[str] = None,
    user_id: Optional[str] = None,
    published_only: bool = False
) -> List[dict]:
    query = {}
    if contest_id:
        query["contestId"] = contest_id
    if user_id:
        query["userId"] = user_id
    if published_only:
        query["publishedAt"] = {"$ne": None}
    cursor = db.results.find(query, NO_ID).sort("rank", 1)
    return await cursor.to_list(length=None)


async def update_result(db: AsyncIOMotorDatabase, result_id: str, updates: dict, unset: Optional[List[str]] = None):
    operation = {"$set": updates}
    if unset:
        operation["$unset"] = {field: "" for field in unset}
    await db.results.update_one({"id": result_id}, operation)


# ==================== EARNINGS ====================

async def insert_earning(
    db: AsyncIOMotorDatabase,
    creator_id: str,
    registration: dict,
    amount: float
) -> Tuple[dict, bool]:
    """One earning per registration, however often the trigger fires"""
    earning = {
        "id": generate_id("ERN"),
        "creatorId": creator_id,
        "registrationId": registration["id"],
        "contestId": registration["contestId"],
        "amount": amount,
        "earnedAt": utcnow(),
    }
    return await _insert_if_absent(db.earnings, {"registrationId": registration["id"]}, earning)


async def get_earnings(db: AsyncIOMotorDatabase, creator_id: str, limit: Optional[int] = None) -> List[dict]:
    cursor = db.earnings.find({"creatorId": creator_id}, NO_ID).sort("earnedAt", -1)
    if limit:
        cursor = cursor.limit(limit)
    return await cursor.to_list(length=limit)


# ==================== WITHDRAWALS ====================

async def create_withdrawal(db: AsyncIOMotorDatabase, creator_id: str, data: dict) -> dict:
    withdrawal = {
        **data,
        "id": generate_id("WDR"),
        "creatorId": creator_id,
        "status": WithdrawalStatus.PENDING.value,
        "requestedAt": utcnow(),
    }
    await db.withdrawals.insert_one(withdrawal)
    withdrawal.pop("_id", None)
    return withdrawal


async def list_withdrawals(db: AsyncIOMotorDatabase, creator_id: Optional[str] = None) -> List[dict]:
    query = {"creatorId": creator_id} if creator_id else {}
    cursor = db.withdrawals.find(query, NO_ID).sort("requestedAt", -1)
    return await cursor.to_list(length=None)


async def get_withdrawal(db: AsyncIOMotorDatabase, withdrawal_id: str) -> Optional[dict]:
    return await db.withdrawals.find_one({"id": withdrawal_id}, NO_ID)


async def process_withdrawal(
    db: AsyncIOMotorDatabase,
    withdrawal_id: str,
    new_status: WithdrawalStatus
) -> Optional[dict]:
    """Only a pending withdrawal moves; None when it is missing or already processed"""
    return await db.withdrawals.find_one_and_update(
        {"id": withdrawal_id, "status": WithdrawalStatus.PENDING.value},
        {"$set": {"status": new_status.value, "processedAt": utcnow()}},
        projection=NO_ID,
        return_document=ReturnDocument.AFTER,
    )


# ==================== STATS ====================

async def get_creator_stats(db: AsyncIOMotorDatabase, creator_id: str) -> dict:
    earnings = await get_earnings(db, creator_id)
    withdrawals = await list_withdrawals(db, creator_id)

    total_earnings = sum(e.get("amount", 0) for e in earnings)
    pending = sum(w.get("amount", 0) for w in withdrawals if w.get("status") == WithdrawalStatus.PENDING.value)
    approved = sum(w.get("amount", 0) for w in withdrawals if w.get("status") == WithdrawalStatus.APPROVED.value)
    referrals = await db.users.count_documents({"referredBy": creator_id})

    return {
        "totalEarnings": total_earnings,
        "pendingWithdrawals": pending,
        "totalReferrals": referrals,
        "availableBalance": total_earnings - approved - pending,
    }
