"""
Registration gate
Decides whether a student may read questions or submit answers for a contest,
and creates registrations under the one-per-(user, contest) guard.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.clock import utcnow
from app.contests.database import insert_registration
from app.contests.models import ContestStatus, PaymentStatus, RegistrationCreate
from app.contests.status import compute_status

logger = logging.getLogger(__name__)

# code -> caller-facing message
DENIAL_MESSAGES = {
    "NOT_REGISTERED": "Not registered for this contest",
    "NOT_APPROVED": "Payment not approved",
    "NOT_STARTED": "Contest has not started yet",
    "CONTEST_ENDED": "Contest has ended",
    "REGISTRATION_CLOSED": "Registration is closed for this contest",
    "ALREADY_REGISTERED": "Already registered for this contest",
}


def denied(code: str, status_code: int = 403) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"message": DENIAL_MESSAGES[code], "code": code},
    )


def check_registration(registration: Optional[dict]) -> Optional[str]:
    """Denial code for a missing or unapproved registration, else None"""
    if not registration:
        return "NOT_REGISTERED"
    if registration.get("paymentStatus") != PaymentStatus.APPROVED.value:
        return "NOT_APPROVED"
    return None


def check_window(contest: dict, now: datetime) -> Optional[str]:
    """Denial code when `now` is outside [startTime, endTime], i.e. not `live`"""
    status = compute_status(contest, now)
    if status == ContestStatus.UPCOMING.value:
        return "NOT_STARTED"
    if status == ContestStatus.COMPLETED.value:
        return "CONTEST_ENDED"
    return None


def access_decision(
    registration: Optional[dict],
    contest: dict,
    now: Optional[datetime] = None
) -> Tuple[bool, Optional[str]]:
    """
    Returns:
        tuple: (allowed, denial code or None)
    """
    now = now or utcnow()
    code = check_registration(registration) or check_window(contest, now)
    return code is None, code


def can_access_questions(registration: Optional[dict], contest: dict, now: Optional[datetime] = None) -> bool:
    return access_decision(registration, contest, now)[0]


def can_submit(registration: Optional[dict], contest: dict, now: Optional[datetime] = None) -> bool:
    """Same gate as the question read, re-checked at submission time"""
    return access_decision(registration, contest, now)[0]


def ensure_question_access(registration: Optional[dict], contest: dict, now: Optional[datetime] = None):
    """Raises 403 with a distinguishable code"""
    allowed, code = access_decision(registration, contest, now)
    if not allowed:
        raise denied(code)


def ensure_can_submit(registration: Optional[dict], contest: dict, now: Optional[datetime] = None):
    allowed, code = access_decision(registration, contest, now)
    if not allowed:
        logger.info("Submission blocked for contest %s: %s", contest.get("id"), code)
        raise denied(code)


async def register_for_contest(
    db: AsyncIOMotorDatabase,
    contest: dict,
    user_id: str,
    payload: RegistrationCreate,
    now: Optional[datetime] = None
) -> dict:
    """
    Create a pending registration.

    Raises:
        403: contest already live or completed
        400: a registration already exists for this user and contest
    """
    if compute_status(contest, now) != ContestStatus.UPCOMING.value:
        raise denied("REGISTRATION_CLOSED")

    registration, created = await insert_registration(
        db,
        contest["id"],
        user_id,
        referral_code=payload.referralCode,
        payment_screenshot=payload.paymentScreenshot,
    )
    if not created:
        raise denied("ALREADY_REGISTERED", status_code=400)

    logger.info("User %s registered for contest %s", user_id, contest["id"])
    return registration
