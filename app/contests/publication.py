"""
Leaderboard & publication
Ranks every Result of a contest, resolves prizes, stamps publishedAt and
completes the contest. Re-running recomputes everything from the stored
Results, so publishing twice gives the same ranks and prizes.
"""

import asyncio
import logging
import math
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.clock import utcnow
from app.contests.database import get_results, get_users_by_ids, mark_contest_completed, update_result
from app.contests.models import ManualPrize

logger = logging.getLogger(__name__)

# One publisher per contest at a time (single-process deployment). A lock is
# dropped once nobody holds or waits on it.
_publish_locks: Dict[str, asyncio.Lock] = {}
_lock_users: Dict[str, int] = defaultdict(int)


@asynccontextmanager
async def contest_lock(contest_id: str):
    lock = _publish_locks.setdefault(contest_id, asyncio.Lock())
    _lock_users[contest_id] += 1
    try:
        async with lock:
            yield
    finally:
        _lock_users[contest_id] -= 1
        if not _lock_users[contest_id]:
            del _lock_users[contest_id]
            _publish_locks.pop(contest_id, None)

# ==================== RANKING ====================

def ranking_key(result: dict):
    """Score descending, then time taken ascending; missing time sorts last"""
    time_taken = result.get("timeTakenSeconds")
    return (-result.get("score", 0), time_taken if time_taken is not None else math.inf)


def rank_results(results: List[dict]) -> List[dict]:
    """Stable sort; every result gets a distinct 1-based rank"""
    return sorted(results, key=ranking_key)


def resolve_prize(
    user_id: str,
    rank: int,
    manual_prizes: Dict[str, float],
    contest_prizes: List[dict],
    previous_prize: Optional[float] = None
) -> Optional[float]:
    """
    Precedence: manual override for the user, then the contest's prize for
    the rank, then whatever the result already carried, else no prize.
    """
    if manual_prizes.get(user_id) is not None:
        return manual_prizes[user_id]

    for tier in contest_prizes or []:
        if tier.get("rank") == rank and tier.get("prize") is not None:
            return tier["prize"]

    return previous_prize


def plan_publication(
    results: List[dict],
    contest: dict,
    manual_prizes: Optional[Dict[str, float]] = None
) -> List[dict]:
    """
    Returns one entry per result: {"id", "userId", "rank", "prize", "isWinner"}
    in rank order. Pure; nothing is written.
    """
    manual_prizes = manual_prizes or {}
    plan = []
    for index, result in enumerate(rank_results(results)):
        rank = index + 1
        prize = resolve_prize(
            result["userId"], rank, manual_prizes,
            contest.get("prizes") or [], result.get("prize"),
        )
        plan.append({
            "id": result["id"],
            "userId": result["userId"],
            "rank": rank,
            "prize": prize,
            "isWinner": prize is not None and prize > 0,
        })
    return plan

# ==================== ENRICHMENT ====================

async def enrich_results(db: AsyncIOMotorDatabase, results: List[dict], include_email: bool = False) -> List[dict]:
    users = await get_users_by_ids(db, [r["userId"] for r in results])
    enriched = []
    for result in results:
        user = users.get(result["userId"]) or {}
        row = {**result, "userName": user.get("name"), "userCollege": user.get("college")}
        if include_email:
            row["userEmail"] = user.get("email")
        enriched.append(row)
    return enriched

# ==================== PUBLISH ====================

def manual_prize_map(prizes: Optional[List[ManualPrize]]) -> Dict[str, float]:
    return {p.userId: p.prize for p in prizes or []}


async def publish_results(
    db: AsyncIOMotorDatabase,
    contest: dict,
    manual_prizes: Optional[List[ManualPrize]] = None,
    now: Optional[datetime] = None
) -> dict:
    """
    Rank, award and publish every Result of the contest, then mark the
    contest completed.

    Returns:
        {"success": True, "contest": dict, "results": [enriched results by rank]}
    """
    contest_id = contest["id"]

    async with contest_lock(contest_id):
        published_at = now or utcnow()
        results = await get_results(db, contest_id=contest_id)
        plan = plan_publication(results, contest, manual_prize_map(manual_prizes))

        for entry in plan:
            updates = {
                "rank": entry["rank"],
                "publishedAt": published_at,
                "isWinner": entry["isWinner"],
            }
            if entry["prize"] is None:
                await update_result(db, entry["id"], updates, unset=["prize"])
            else:
                updates["prize"] = entry["prize"]
                await update_result(db, entry["id"], updates)

        updated_contest = await mark_contest_completed(db, contest_id)

        logger.info(
            "Published %d results for contest %s (%d winners)",
            len(plan), contest_id, sum(1 for e in plan if e["isWinner"]),
        )

    refreshed = await get_results(db, contest_id=contest_id)
    return {
        "success": True,
        "contest": updated_contest,
        "results": await enrich_results(db, refreshed, include_email=True),
    }
