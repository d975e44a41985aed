from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional

from bmplannr.core.grades import MAX_WEIGHT, SEMESTERS, GradeRecord, GradeType


class TestType(str, Enum):
    __test__ = False

    EXAM = "exam"
    TEST = "test"
    PRESENTATION = "presentation"
    PROJECT = "project"
    HOMEWORK = "homework"


class TestStatus(str, Enum):
    __test__ = False

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InvalidTransitionError(Exception):
    pass


@dataclass(frozen=True)
class ScheduledTest:
    user_id: str
    subject_id: str
    title: str
    test_type: TestType
    scheduled_date: datetime
    id: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    weight: Optional[float] = None
    semester: Optional[int] = None
    status: TestStatus = TestStatus.SCHEDULED
    grade_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


ALLOWED_TRANSITIONS = {
    TestStatus.SCHEDULED: {TestStatus.COMPLETED, TestStatus.CANCELLED},
    TestStatus.COMPLETED: set(),
    TestStatus.CANCELLED: set(),
}


def _field(candidate: Any, name: str) -> Any:
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def validate_scheduled_test(candidate: Any) -> List[str]:
    errors: List[str] = []

    title = _field(candidate, "title")
    if not title or not str(title).strip():
        errors.append("Title is required")

    if not _field(candidate, "subject_id"):
        errors.append("Subject must be selected")

    if not isinstance(_field(candidate, "scheduled_date"), datetime):
        errors.append("Scheduled date must be a datetime")

    test_type = _field(candidate, "test_type")
    try:
        TestType(test_type)
    except ValueError:
        errors.append(f"Unknown test type: {test_type}")

    weight = _field(candidate, "weight")
    if weight is not None and (not isinstance(weight, (int, float)) or not 0 < weight <= MAX_WEIGHT):
        errors.append(f"Weight must be greater than 0 and at most {MAX_WEIGHT}")

    semester = _field(candidate, "semester")
    if semester is not None and semester not in SEMESTERS:
        errors.append("Semester must be between 1 and 4")

    duration = _field(candidate, "duration")
    if duration is not None and (not isinstance(duration, int) or duration <= 0):
        errors.append("Duration must be a positive number of minutes")

    return errors


def transition(test: ScheduledTest, status: TestStatus, **changes: Any) -> ScheduledTest:
    if status not in ALLOWED_TRANSITIONS[test.status]:
        raise InvalidTransitionError(f"Cannot move test from {test.status.value} to {status.value}")
    return replace(test, status=status, **changes)


def grade_from_test(test: ScheduledTest, value: float) -> GradeRecord:
    if test.status is not TestStatus.SCHEDULED:
        raise InvalidTransitionError(f"Only scheduled tests can be graded, test is {test.status.value}")
    return GradeRecord(
        user_id=test.user_id,
        subject_id=test.subject_id,
        type=GradeType.EXAM if test.test_type is TestType.EXAM else GradeType.INDIVIDUAL,
        value=value,
        semester=test.semester,
        name=test.title,
        weight=test.weight,
        date_taken=test.scheduled_date.isoformat(),
        description=test.description,
        duration=str(test.duration) if test.duration is not None else None,
    )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def upcoming_tests(tests: Iterable[ScheduledTest], days: int = 7, now: Optional[datetime] = None) -> List[ScheduledTest]:
    start = _aware(now or datetime.now(timezone.utc))
    end = start + timedelta(days=days)
    results = [
        t for t in tests
        if t.status is TestStatus.SCHEDULED and start <= _aware(t.scheduled_date) <= end
    ]
    results.sort(key=lambda t: _aware(t.scheduled_date))
    return results


def tests_for_subject(tests: Iterable[ScheduledTest], subject_id: str) -> List[ScheduledTest]:
    return [t for t in tests if t.subject_id == subject_id]


def tests_in_month(tests: Iterable[ScheduledTest], year: int, month: int) -> List[ScheduledTest]:
    return [t for t in tests if t.scheduled_date.year == year and t.scheduled_date.month == month]


def is_date_available(tests: Iterable[ScheduledTest], day: date) -> bool:
    if isinstance(day, datetime):
        day = day.date()
    return not any(
        t.status is TestStatus.SCHEDULED and t.scheduled_date.date() == day
        for t in tests
    )
