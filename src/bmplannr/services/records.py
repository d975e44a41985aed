from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from bmplannr.core.grades import BMType, GradeRecord, GradeType, StudyMode
from bmplannr.core.scheduling import ScheduledTest, TestStatus, TestType
from bmplannr.services.store import StoreError


@dataclass(frozen=True)
class BMSettings:
    user_id: str
    bm_type: BMType
    study_mode: StudyMode
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def _enum(enum_cls, value: Any, field_name: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise StoreError(f"Invalid stored value for {field_name}: {value!r}") from exc


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise StoreError(f"Invalid stored datetime: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def grade_from_doc(doc: Mapping) -> GradeRecord:
    return GradeRecord(
        id=doc.get("id"),
        user_id=doc["user_id"],
        subject_id=doc["subject_id"],
        type=_enum(GradeType, doc.get("type"), "type"),
        value=float(doc["value"]),
        semester=_optional_int(doc.get("semester")),
        name=doc.get("name"),
        weight=_optional_float(doc.get("weight")),
        date_taken=doc.get("date_taken"),
        description=doc.get("description"),
        duration=doc.get("duration"),
        created_at=doc.get("created_at"),
    )


def grade_to_doc(grade: GradeRecord) -> Dict[str, Any]:
    doc = {
        "user_id": grade.user_id,
        "subject_id": grade.subject_id,
        "type": grade.type.value,
        "value": grade.value,
        "semester": grade.semester,
        "name": grade.name,
        "weight": grade.weight,
        "date_taken": grade.date_taken,
        "description": grade.description,
        "duration": grade.duration,
    }
    if grade.id:
        doc["id"] = grade.id
    return doc


def settings_from_doc(doc: Mapping) -> BMSettings:
    return BMSettings(
        user_id=doc["user_id"],
        bm_type=_enum(BMType, doc.get("bm_type"), "bm_type"),
        study_mode=_enum(StudyMode, doc.get("study_mode") or StudyMode.FULLTIME.value, "study_mode"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def scheduled_test_from_doc(doc: Mapping) -> ScheduledTest:
    return ScheduledTest(
        id=doc.get("id"),
        user_id=doc["user_id"],
        subject_id=doc["subject_id"],
        title=doc["title"],
        description=doc.get("description"),
        test_type=_enum(TestType, doc.get("test_type"), "test_type"),
        scheduled_date=from_iso(doc["scheduled_date"]),
        duration=_optional_int(doc.get("duration")),
        weight=_optional_float(doc.get("weight")),
        semester=_optional_int(doc.get("semester")),
        status=_enum(TestStatus, doc.get("status") or TestStatus.SCHEDULED.value, "status"),
        grade_id=doc.get("grade_id"),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def scheduled_test_to_doc(test: ScheduledTest) -> Dict[str, Any]:
    doc = {
        "user_id": test.user_id,
        "subject_id": test.subject_id,
        "title": test.title,
        "description": test.description,
        "test_type": test.test_type.value,
        "scheduled_date": to_iso(test.scheduled_date),
        "duration": test.duration,
        "weight": test.weight,
        "semester": test.semester,
        "status": test.status.value,
        "grade_id": test.grade_id,
    }
    if test.id:
        doc["id"] = test.id
    return doc


def grade_to_json(grade: GradeRecord) -> Dict[str, Any]:
    return {"id": grade.id, **grade_to_doc(grade), "created_at": grade.created_at}


def scheduled_test_to_json(test: ScheduledTest) -> Dict[str, Any]:
    return {
        "id": test.id,
        **scheduled_test_to_doc(test),
        "created_at": test.created_at,
        "updated_at": test.updated_at,
    }
