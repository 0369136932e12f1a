"""
Contest lifecycle
The phase of a contest is always derived from its start/end instants and the
current time. The stored `status` field is only a fallback for unreadable
timestamps (and the target of the publish override).
"""

from datetime import datetime
from typing import Optional

from app.contests.clock import as_utc, utcnow
from app.contests.models import CardAction, ContestStatus, PaymentStatus


def compute_status(contest: Optional[dict], now: Optional[datetime] = None) -> str:
    """upcoming / live / completed for `now`; never raises"""
    if not contest:
        return ContestStatus.UPCOMING.value

    fallback = contest.get("status") or ContestStatus.UPCOMING.value
    start = as_utc(contest.get("startTime"))
    end = as_utc(contest.get("endTime"))
    if start is None or end is None:
        return fallback

    now = as_utc(now) if now is not None else utcnow()
    if now < start:
        return ContestStatus.UPCOMING.value
    if now <= end:
        return ContestStatus.LIVE.value
    return ContestStatus.COMPLETED.value


def with_status(contest: dict, now: Optional[datetime] = None) -> dict:
    """Copy of the contest with `status` replaced by the computed phase"""
    return {**contest, "status": compute_status(contest, now)}


def contest_card_action(
    status: str,
    registration: Optional[dict] = None,
    attempt: Optional[dict] = None
) -> CardAction:
    """
    What the contest card should offer, given the computed phase and the
    viewer's registration and attempt (both optional).
    """
    is_registered = registration is not None
    is_approved = is_registered and registration.get("paymentStatus") == PaymentStatus.APPROVED.value
    has_submitted = bool(attempt and attempt.get("submittedAt"))

    if status == ContestStatus.COMPLETED.value:
        return CardAction.VIEW_RESULTS if is_registered else CardAction.CONTEST_ENDED

    if status == ContestStatus.LIVE.value:
        if is_approved:
            return CardAction.SUBMITTED if has_submitted else CardAction.START_CONTEST
        if is_registered:
            return CardAction.NOT_APPROVED
        return CardAction.REGISTRATION_CLOSED

    if not is_registered:
        return CardAction.REGISTER
    if not is_approved:
        return CardAction.NOT_APPROVED
    return CardAction.NOT_STARTED
