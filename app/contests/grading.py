import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.contests.access import check_registration, denied
from app.contests.clock import as_utc, utcnow
from app.contests.database import close_attempt, get_user_attempt, get_user_registration, insert_result
from app.contests.models import QuestionType, SubmissionCreate, parse_int

logger = logging.getLogger(__name__)

# ==================== GRADING LOGIC ====================

def is_answered(answer: Optional[str]) -> bool:
    return answer is not None and str(answer).strip() != ""


def is_correct(question_type: str, answer: str, correct_answer: Optional[str]) -> bool:
    """
    Per-type comparison:
    - mcq / coding: exact string equality (coding is never executed)
    - integer: leading-integer parse on both sides; unparseable never matches
    - fill_blank / short_answer: trimmed, case-insensitive equality
    """
    if correct_answer is None or not is_answered(answer):
        return False

    if question_type == QuestionType.INTEGER:
        given = parse_int(answer)
        expected = parse_int(correct_answer)
        return given is not None and expected is not None and given == expected

    if question_type in (QuestionType.FILL_BLANK, QuestionType.SHORT_ANSWER):
        return answer.strip().lower() == correct_answer.strip().lower()

    return answer == correct_answer


def grade_question(question: dict, answer: Optional[str], contest: dict) -> dict:
    """
    Returns:
        {"correct": bool, "marks": float}  marks is the signed score delta
    """
    marks = question.get("marks", 0)
    question_type = question.get("type") or contest.get("type")
    correct_answer = question.get("correctAnswer")

    if is_correct(question_type, answer, correct_answer):
        return {"correct": True, "marks": marks}

    # No penalty for blanks, or for questions that have no answer key
    if is_answered(answer) and correct_answer is not None and contest.get("negativeMarking"):
        penalty = marks * (contest.get("negativeMarkValue") or 0)
        return {"correct": False, "marks": -penalty}

    return {"correct": False, "marks": 0}


def grade_submission(contest: dict, questions: List[dict], answers: Dict[str, str]) -> dict:
    """
    Score an answer map against the contest's questions.

    Returns:
    {
        "score":           float,  ← clamped at 0
        "rawScore":        float,  ← may be negative under negative marking
        "questionResults": {questionId: {"correct", "marks"}},
        "totalQuestions", "correctAnswers", "wrongAnswers", "unanswered": int
    }
    """
    answers = answers or {}
    raw_score = 0
    question_results = {}
    answered = 0

    for question in questions:
        answer = answers.get(question["id"])
        outcome = grade_question(question, answer, contest)
        question_results[question["id"]] = outcome
        raw_score += outcome["marks"]
        if is_answered(answer):
            answered += 1

    total = len(questions)
    correct = sum(1 for r in question_results.values() if r["correct"])

    return {
        "score": max(0, raw_score),
        "rawScore": raw_score,
        "questionResults": question_results,
        "totalQuestions": total,
        "correctAnswers": correct,
        "wrongAnswers": max(0, answered - correct),
        "unanswered": max(0, total - answered),
    }


def seconds_between(started_at, finished_at: datetime) -> Optional[int]:
    started = as_utc(started_at)
    if started is None:
        return None
    return max(0, math.floor((as_utc(finished_at) - started).total_seconds()))

# ==================== SUBMISSION ====================

async def submit_answers(
    db: AsyncIOMotorDatabase,
    contest: dict,
    questions: List[dict],
    user_id: str,
    submission: SubmissionCreate,
    now: Optional[datetime] = None
) -> dict:
    """
    Grade and persist one submission.

    The first submission for (user, contest) creates the Result; later ones
    return that Result unchanged. The Attempt, when one was started, is
    stamped with submittedAt and the clamped score.
    """
    registration = await get_user_registration(db, user_id, contest["id"])
    code = check_registration(registration)
    if code:
        raise denied(code)

    now = now or utcnow()
    graded = grade_submission(contest, questions, submission.answers)

    attempt = await get_user_attempt(db, user_id, contest["id"])
    time_taken = seconds_between(attempt.get("startedAt"), now) if attempt else None

    result_doc = {
        "contestId": contest["id"],
        "userId": user_id,
        "score": graded["score"],
        "totalQuestions": graded["totalQuestions"],
        "correctAnswers": graded["correctAnswers"],
        "wrongAnswers": graded["wrongAnswers"],
        "unanswered": graded["unanswered"],
        "isWinner": False,
        "answers": submission.answers,
        "tabSwitchCount": submission.tabSwitchCount,
        "submittedAt": now,
    }
    if time_taken is not None:
        result_doc["timeTakenSeconds"] = time_taken

    result, created = await insert_result(db, result_doc)

    if not created:
        logger.info("Duplicate submission ignored: contest=%s user=%s", contest["id"], user_id)
        previous = grade_submission(contest, questions, result.get("answers") or {})
        return {
            "result": result,
            "questionResults": previous["questionResults"],
            "message": "Already submitted",
        }

    if attempt:
        await close_attempt(db, attempt["id"], {
            "submittedAt": now,
            "score": graded["score"],
            "answers": submission.answers,
            "autoSubmitted": submission.autoSubmitted,
            "tabSwitchCount": submission.tabSwitchCount,
        })

    logger.info(
        "Graded contest=%s user=%s score=%s (%s/%s correct, auto=%s)",
        contest["id"], user_id, graded["score"],
        graded["correctAnswers"], graded["totalQuestions"], submission.autoSubmitted,
    )

    return {
        "result": result,
        "questionResults": graded["questionResults"],
        "message": "Submission successful",
    }
