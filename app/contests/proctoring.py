"""
Proctoring session
Event-driven exam session for one student and one contest. Every handler runs
on a single asyncio loop, so events never interleave mid-handler.

    AWAITING_FULLSCREEN -> ACTIVE <-> SUSPENDED -> SUBMITTED | AUTO_SUBMITTED
    AWAITING_FULLSCREEN | SUSPENDED -> DECLINED (back to the dashboard, nothing submitted)

The countdown is always endTime - now, so every participant shares the same
deadline whatever time they started.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

import httpx

from app.contests.client import ContestAPIError, ContestClient
from app.contests.clock import as_utc, utcnow
from app.contests.config import AUTO_SUBMIT_LEAD_SECONDS, VIOLATION_WARNING_SECONDS

logger = logging.getLogger(__name__)

CRITICAL_SECONDS = 10 * 60
WARNING_SECONDS = 30 * 60

# keys suppressed together with Ctrl/Cmd
BLOCKED_SHORTCUTS = {"c", "v", "a"}


class SessionState(str, Enum):
    AWAITING_FULLSCREEN = "awaiting_fullscreen"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    DECLINED = "declined"


FINISHED_STATES = {SessionState.SUBMITTED, SessionState.AUTO_SUBMITTED, SessionState.DECLINED}

# ==================== DISPLAY HELPERS ====================

def format_remaining(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def time_band(seconds: int) -> str:
    if seconds < CRITICAL_SECONDS:
        return "critical"
    if seconds < WARNING_SECONDS:
        return "warning"
    return "normal"

# ==================== SESSION ====================

class ProctoringSession:
    def __init__(
        self,
        client: ContestClient,
        contest: dict,
        questions: Optional[List[dict]] = None,
        clock: Callable[[], datetime] = utcnow,
        warning_seconds: int = VIOLATION_WARNING_SECONDS,
        auto_submit_lead: int = AUTO_SUBMIT_LEAD_SECONDS
    ):
        self.client = client
        self.contest = contest
        self.contest_id = contest["id"]
        self.end_time = as_utc(contest.get("endTime"))
        if self.end_time is None:
            raise ValueError("Contest has no usable endTime")
        self.questions = questions or []
        self.clock = clock
        self.warning_seconds = warning_seconds
        self.auto_submit_lead = auto_submit_lead

        self.state = SessionState.AWAITING_FULLSCREEN
        self.fullscreen = False
        self.visible = True
        self.tab_switch_count = 0
        self.warning_until: Optional[datetime] = None
        self.answers: Dict[str, str] = {}
        self.result: Optional[dict] = None
        self.submitting = False

    @classmethod
    async def open(cls, client: ContestClient, contest_id: str, **kwargs) -> "ProctoringSession":
        """
        Load the contest through the gated question read and record the
        attempt start. Gate denials surface as ContestAPIError.
        """
        data = await client.get_questions(contest_id)
        await client.start_attempt(contest_id)
        return cls(client, data["contest"], data.get("questions"), **kwargs)

    @property
    def is_finished(self) -> bool:
        return self.state in FINISHED_STATES

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        return max(0, math.floor((self.end_time - now).total_seconds()))

    def warning_active(self, now: Optional[datetime] = None) -> bool:
        return self.warning_until is not None and (now or self.clock()) < self.warning_until

    def _record_violation(self, reason: str):
        self.tab_switch_count += 1
        self.warning_until = self.clock() + timedelta(seconds=self.warning_seconds)
        logger.info(
            "Proctoring violation (%s) in contest %s, count=%d",
            reason, self.contest_id, self.tab_switch_count,
        )

    # ---------- browser events ----------

    def request_fullscreen(self, granted: bool) -> SessionState:
        """Answer to the fullscreen prompt; declining abandons the attempt"""
        if self.is_finished or self.state == SessionState.ACTIVE:
            return self.state

        if not granted:
            self.state = SessionState.DECLINED
            logger.info("Fullscreen declined, leaving contest %s", self.contest_id)
            return self.state

        self.fullscreen = True
        self.state = SessionState.ACTIVE if self.visible else SessionState.SUSPENDED
        return self.state

    def on_fullscreen_exit(self):
        """
        Counts a violation and re-prompts for fullscreen, also when the tab is
        hidden at the time; only request_fullscreen(True) can resume.
        """
        if self.is_finished or not self.fullscreen:
            return
        self.fullscreen = False
        self.state = SessionState.SUSPENDED
        self._record_violation("fullscreen exit")

    def on_visibility_change(self, hidden: bool):
        self.visible = not hidden
        if hidden:
            if self.state == SessionState.ACTIVE:
                self.state = SessionState.SUSPENDED
                self._record_violation("tab hidden")
        elif self.state == SessionState.SUSPENDED and self.fullscreen:
            self.state = SessionState.ACTIVE

    def intercept(self, event: str, key: Optional[str] = None, ctrl: bool = False) -> bool:
        """
        True when the event must be suppressed: copy/paste, Ctrl/Cmd + C/V/A
        and PrintScreen, only while the session is active.
        """
        if self.state != SessionState.ACTIVE:
            return False
        if event in ("copy", "paste"):
            return True
        if event == "keydown":
            if key == "PrintScreen":
                return True
            return ctrl and (key or "").lower() in BLOCKED_SHORTCUTS
        return False

    def set_answer(self, question_id: str, value: str):
        if self.is_finished or self.submitting:
            return
        self.answers[question_id] = value

    def answered_count(self) -> int:
        return sum(1 for value in self.answers.values() if value and value.strip())

    # ---------- timer & submission ----------

    def tick(self, now: Optional[datetime] = None) -> bool:
        """
        One timer step; True when the automatic submit is due. It fires
        auto_submit_lead seconds early so it reaches the server before endTime.
        """
        now = now or self.clock()
        if self.warning_until is not None and now >= self.warning_until:
            self.warning_until = None
        if self.is_finished:
            return False
        return self.remaining_seconds(now) <= self.auto_submit_lead

    async def submit(self, auto: bool = False) -> Optional[dict]:
        """
        Send the whole answer map once. A second call while one is in flight,
        or after the session finished, returns the existing result.
        """
        if self.is_finished or self.submitting:
            return self.result

        self.submitting = True
        try:
            self.result = await self.client.submit(
                self.contest_id, dict(self.answers), self.tab_switch_count, auto_submitted=auto
            )
        finally:
            self.submitting = False

        self.state = SessionState.AUTO_SUBMITTED if auto else SessionState.SUBMITTED
        self.fullscreen = False
        logger.info(
            "%s submission sent for contest %s (%d answered, %d violations)",
            "Automatic" if auto else "Manual", self.contest_id,
            self.answered_count(), self.tab_switch_count,
        )
        return self.result

    async def run(self, interval: float = 1.0) -> Optional[dict]:
        """
        Tick until the session finishes. A failed automatic submission is
        retried on the next tick unless the server refused it outright (4xx).
        """
        while not self.is_finished:
            if self.tick():
                try:
                    await self.submit(auto=True)
                except ContestAPIError as e:
                    if e.status_code < 500:
                        logger.error("Automatic submission refused for contest %s: %s", self.contest_id, e.message)
                        raise
                    logger.warning("Automatic submission failed (%s), retrying", e.status_code)
                except httpx.HTTPError as e:
                    logger.warning("Automatic submission failed (%s), retrying", e)
            if self.is_finished:
                break
            await asyncio.sleep(interval)
        return self.result
