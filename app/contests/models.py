import re
from pydantic import BaseModel, Field, validator
from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum

from app.contests.clock import as_utc

# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MCQ = "mcq"
    FILL_BLANK = "fill_blank"
    SHORT_ANSWER = "short_answer"
    INTEGER = "integer"
    CODING = "coding"

class ContestCategory(str, Enum):
    APTITUDE = "aptitude"
    GK = "gk"
    CODING = "coding"
    HACKATHON = "hackathon"

class ContestStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class PaymentMethod(str, Enum):
    UPI = "upi"
    BANK = "bank"

class UserRole(str, Enum):
    STUDENT = "student"
    CREATOR = "creator"
    ADMIN = "admin"

class CardAction(str, Enum):
    """What the contest card offers the viewer"""
    VIEW_RESULTS = "view_results"
    CONTEST_ENDED = "contest_ended"
    SUBMITTED = "submitted"
    START_CONTEST = "start_contest"
    NOT_APPROVED = "not_approved"
    REGISTRATION_CLOSED = "registration_closed"
    REGISTER = "register"
    NOT_STARTED = "not_started"

# ==================== ANSWER KEYS ====================

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

def parse_int(value: Any) -> Optional[int]:
    """
    Leading-integer parse: "42" -> 42, " 7 apples" -> 7, "4.9" -> 4.
    Returns None when no digits lead the text.
    """
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))

def check_answer_key(question_type: str, options: Optional[List[str]], correct_answer: Optional[str]):
    """Raises ValueError when the answer key cannot be graded for this type"""
    if question_type == QuestionType.MCQ:
        if not options:
            raise ValueError("MCQ questions need at least one option")
        if correct_answer is not None and correct_answer not in options:
            raise ValueError("correctAnswer must match one of the options exactly")
    elif question_type == QuestionType.INTEGER:
        if correct_answer is not None and parse_int(correct_answer) is None:
            raise ValueError("correctAnswer must be an integer")

# ==================== CONTEST MODELS ====================

class PrizeTier(BaseModel):
    rank: int = Field(..., ge=1)
    prize: float = Field(..., ge=0)
    title: Optional[str] = None

class ContestCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    type: QuestionType = QuestionType.MCQ
    category: ContestCategory = ContestCategory.APTITUDE
    prize: float = 0
    prizes: List[PrizeTier] = []
    fee: float = Field(0, ge=0)
    startTime: datetime
    endTime: datetime
    duration: int = Field(..., gt=0)  # minutes, informational
    maxParticipants: Optional[int] = None
    totalMarks: float = Field(..., ge=0)
    passingMarks: Optional[float] = None
    commissionPerRegistration: float = Field(0, ge=0)
    negativeMarking: bool = False
    negativeMarkValue: float = Field(0, ge=0, le=1)
    qrCodeUrl: Optional[str] = None

    class Config:
        use_enum_values = True

    @validator("startTime", "endTime")
    def normalize_instant(cls, v):
        return as_utc(v)

    @validator("endTime")
    def end_after_start(cls, v, values):
        start = values.get("startTime")
        if start is not None and v <= start:
            raise ValueError("endTime must be after startTime")
        return v

    @validator("prizes")
    def unique_prize_ranks(cls, v):
        ranks = [p.rank for p in v]
        if len(ranks) != len(set(ranks)):
            raise ValueError("Each rank may appear only once in prizes")
        return v

class ContestUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[QuestionType] = None
    category: Optional[ContestCategory] = None
    prize: Optional[float] = None
    prizes: Optional[List[PrizeTier]] = None
    fee: Optional[float] = Field(None, ge=0)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: Optional[int] = Field(None, gt=0)
    maxParticipants: Optional[int] = None
    totalMarks: Optional[float] = Field(None, ge=0)
    passingMarks: Optional[float] = None
    commissionPerRegistration: Optional[float] = Field(None, ge=0)
    negativeMarking: Optional[bool] = None
    negativeMarkValue: Optional[float] = Field(None, ge=0, le=1)
    qrCodeUrl: Optional[str] = None

    class Config:
        use_enum_values = True

    @validator("startTime", "endTime")
    def normalize_instant(cls, v):
        return as_utc(v) if v is not None else v

# ==================== QUESTION MODELS ====================

class QuestionCreate(BaseModel):
    type: Optional[QuestionType] = None  # falls back to the contest's type
    questionText: str = Field(..., min_length=1)
    options: Optional[List[str]] = None
    correctAnswer: Optional[str] = None
    marks: float = Field(..., gt=0)
    explanation: Optional[str] = None
    order: int = 0

    class Config:
        use_enum_values = True

    @validator("correctAnswer")
    def answer_key_matches_type(cls, v, values):
        if values.get("type") is not None:
            check_answer_key(values["type"], values.get("options"), v)
        return v

class QuestionUpdate(BaseModel):
    type: Optional[QuestionType] = None
    questionText: Optional[str] = None
    options: Optional[List[str]] = None
    correctAnswer: Optional[str] = None
    marks: Optional[float] = Field(None, gt=0)
    explanation: Optional[str] = None
    order: Optional[int] = None

    class Config:
        use_enum_values = True

# ==================== REGISTRATION / SUBMISSION MODELS ====================

class RegistrationCreate(BaseModel):
    referralCode: Optional[str] = None
    paymentScreenshot: Optional[str] = None  # opaque reference from the upload service

class SubmissionCreate(BaseModel):
    answers: Dict[str, str] = {}
    tabSwitchCount: int = Field(0, ge=0)
    autoSubmitted: bool = False

    @validator("answers", pre=True)
    def stringify_answers(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("answers must be an object keyed by question id")
        return {str(k): "" if val is None else str(val) for k, val in v.items()}

# ==================== PUBLICATION MODELS ====================

class ManualPrize(BaseModel):
    userId: str
    prize: float

class PublishRequest(BaseModel):
    prizes: Optional[List[ManualPrize]] = None

# ==================== WITHDRAWAL MODELS ====================

class BankDetails(BaseModel):
    accountNumber: str
    ifscCode: str
    accountHolder: str

class WithdrawalCreate(BaseModel):
    amount: float = Field(..., gt=0)
    upiId: Optional[str] = None
    bankDetails: Optional[BankDetails] = None
    paymentMethod: PaymentMethod

    class Config:
        use_enum_values = True

    @validator("paymentMethod")
    def payout_target_present(cls, v, values):
        if v == PaymentMethod.UPI and not values.get("upiId"):
            raise ValueError("upiId is required for UPI withdrawals")
        if v == PaymentMethod.BANK and values.get("bankDetails") is None:
            raise ValueError("bankDetails are required for bank withdrawals")
        return v
