"""
Payment review and creator commissions
Approval moves a registration out of `pending` exactly once; the commission
for a referral-attributed registration is recorded at most once.
"""

import logging
from typing import Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.database import (
    get_contest, get_creator_by_referral_code, get_registration,
    insert_earning, transition_payment
)
from app.contests.models import PaymentStatus

logger = logging.getLogger(__name__)


async def trigger_commission(db: AsyncIOMotorDatabase, registration: dict) -> Optional[dict]:
    """
    Credit the referring creator for an approved registration.
    No referral code, no matching creator, or no commission on the contest
    all mean nothing to do.
    """
    referral_code = registration.get("referralCode")
    if not referral_code:
        return None

    creator = await get_creator_by_referral_code(db, referral_code)
    if not creator:
        logger.debug("No creator for referral code %s", referral_code)
        return None

    contest = await get_contest(db, registration["contestId"])
    amount = (contest or {}).get("commissionPerRegistration") or 0
    if amount <= 0:
        return None

    earning, created = await insert_earning(db, creator["id"], registration, amount)
    if created:
        logger.info(
            "Commission %s credited to creator %s for registration %s",
            amount, creator["id"], registration["id"],
        )
    return earning


async def _processed_or_missing(db: AsyncIOMotorDatabase, registration_id: str) -> HTTPException:
    existing = await get_registration(db, registration_id)
    if not existing:
        return HTTPException(status_code=404, detail="Registration not found")
    return HTTPException(
        status_code=409,
        detail=f"Payment already {existing.get('paymentStatus')}",
    )


async def approve_payment(db: AsyncIOMotorDatabase, registration_id: str) -> dict:
    """
    Approve a pending payment and fire the commission trigger.

    Raises:
        404: registration not found
        409: payment no longer pending
        500: approved, but the commission write failed (retryable)
    """
    registration = await transition_payment(db, registration_id, PaymentStatus.APPROVED)
    if registration is None:
        raise await _processed_or_missing(db, registration_id)

    logger.info("Payment approved for registration %s", registration_id)

    try:
        await trigger_commission(db, registration)
    except Exception:
        logger.exception("Commission failed for approved registration %s", registration_id)
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Payment approved but the commission could not be recorded; retry the commission",
                "code": "COMMISSION_PENDING",
            },
        )

    return registration


async def reject_payment(db: AsyncIOMotorDatabase, registration_id: str) -> dict:
    registration = await transition_payment(db, registration_id, PaymentStatus.REJECTED)
    if registration is None:
        raise await _processed_or_missing(db, registration_id)

    logger.info("Payment rejected for registration %s", registration_id)
    return registration


async def retry_commission(db: AsyncIOMotorDatabase, registration_id: str) -> Optional[dict]:
    registration = await get_registration(db, registration_id)
    if not registration:
        raise HTTPException(status_code=404, detail="Registration not found")
    if registration.get("paymentStatus") != PaymentStatus.APPROVED.value:
        raise HTTPException(status_code=409, detail="Payment is not approved")
    return await trigger_commission(db, registration)
