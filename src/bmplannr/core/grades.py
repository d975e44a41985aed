from dataclasses import dataclass
from enum import Enum
import math
from typing import Any, Iterable, List, Mapping, Optional


MIN_GRADE = 1.0
MAX_GRADE = 6.0
PASSING_GRADE = 4.0
MAX_WEIGHT = 10.0
SEMESTERS = (1, 2, 3, 4)

IDAF_ID = "idaf"
IDPA_ID = "idpa"


class GradeType(str, Enum):
    INDIVIDUAL = "individual"
    EXAM = "exam"
    EXPERIENCE = "experience"
    SEMESTER = "semester"
    PROJECT = "project"


class BMType(str, Enum):
    TALS = "tals"
    WD_D = "wd-d"
    ARTE = "arte"
    GESUNDHEIT = "gesundheit"


class StudyMode(str, Enum):
    FULLTIME = "fulltime"
    PARTTIME = "parttime"


class ValidationError(Exception):
    def __init__(self, errors: List[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True)
class GradeRecord:
    user_id: str
    subject_id: str
    type: GradeType
    value: float
    id: Optional[str] = None
    semester: Optional[int] = None
    name: Optional[str] = None
    weight: Optional[float] = None
    date_taken: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def effective_weight(self) -> float:
        return self.weight if self.weight else 1.0


def round_to_half(value: float) -> float:
    """Round to the nearest half grade, ties going up (4.25 -> 4.5)."""
    return math.floor(value * 2 + 0.5) / 2


def round_to_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _as_grade_type(value: Any) -> Optional[GradeType]:
    if isinstance(value, GradeType):
        return value
    try:
        return GradeType(value)
    except ValueError:
        return None


def _field(candidate: Any, name: str) -> Any:
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def validate_grade(candidate: Any, existing: Iterable[GradeRecord] = ()) -> List[str]:
    """
    candidate: a GradeRecord or a mapping with the same field names.
    existing: the user's stored grades, used for the single-IDPA rule.
    Returns every violation found; an empty list means the grade is acceptable.
    """
    errors: List[str] = []

    value = _field(candidate, "value")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not MIN_GRADE <= value <= MAX_GRADE:
        errors.append(f"Grade must be between {MIN_GRADE} and {MAX_GRADE}")

    subject_id = _field(candidate, "subject_id")
    if not subject_id:
        errors.append("Subject must be selected")

    raw_type = _field(candidate, "type")
    grade_type = _as_grade_type(raw_type) if raw_type else None
    if not raw_type:
        errors.append("Grade type must be given")
    elif grade_type is None:
        errors.append(f"Unknown grade type: {raw_type}")

    semester = _field(candidate, "semester")
    if grade_type is GradeType.INDIVIDUAL and not semester:
        errors.append("Semester must be given for individual grades")
    elif semester and semester not in SEMESTERS:
        errors.append("Semester must be between 1 and 4")

    weight = _field(candidate, "weight")
    if weight is not None and (isinstance(weight, bool) or not isinstance(weight, (int, float)) or not 0 < weight <= MAX_WEIGHT):
        errors.append(f"Weight must be greater than 0 and at most {MAX_WEIGHT}")

    if subject_id == IDPA_ID:
        user_id = _field(candidate, "user_id")
        if any(g.subject_id == IDPA_ID and (user_id is None or g.user_id == user_id) for g in existing):
            errors.append("Only one IDPA grade is allowed; delete the existing grade first")

    return errors


def format_grade(grade: float) -> str:
    return f"{round_to_tenth(grade):.1f}" if grade > 0 else "-"


def grade_status(grade: float) -> str:
    if grade == 0:
        return "ungraded"
    return "sufficient" if grade >= PASSING_GRADE else "insufficient"
