import logging

from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.config import MIN_WITHDRAWAL_BALANCE
from app.contests.database import create_withdrawal, get_creator_stats, get_earnings, list_withdrawals
from app.contests.dependencies import UserContext, get_current_creator, get_db
from app.contests.models import WithdrawalCreate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Creator"])


@router.get("/stats")
async def creator_stats(
    db: AsyncIOMotorDatabase = Depends(get_db),
    creator: UserContext = Depends(get_current_creator)
):
    return await get_creator_stats(db, creator.user_id)


@router.get("/earnings/recent")
async def recent_earnings(
    db: AsyncIOMotorDatabase = Depends(get_db),
    creator: UserContext = Depends(get_current_creator)
):
    return await get_earnings(db, creator.user_id, limit=10)


@router.get("/withdrawals")
async def my_withdrawals(
    db: AsyncIOMotorDatabase = Depends(get_db),
    creator: UserContext = Depends(get_current_creator)
):
    return await list_withdrawals(db, creator.user_id)


@router.post("/withdrawals")
async def request_withdrawal(
    payload: WithdrawalCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    creator: UserContext = Depends(get_current_creator)
):
    """
    Needs an available balance of at least MIN_WITHDRAWAL_BALANCE, and the
    amount may not exceed it.
    """
    stats = await get_creator_stats(db, creator.user_id)
    balance = stats["availableBalance"]

    if balance < MIN_WITHDRAWAL_BALANCE:
        raise HTTPException(
            status_code=400,
            detail=f"Minimum balance of {MIN_WITHDRAWAL_BALANCE:g} required to withdraw",
        )
    if payload.amount > balance:
        raise HTTPException(status_code=400, detail="Amount exceeds available balance")

    withdrawal = await create_withdrawal(db, creator.user_id, payload.dict(exclude_none=True))
    logger.info("Withdrawal %s requested by creator %s: %s", withdrawal["id"], creator.user_id, payload.amount)
    return withdrawal
