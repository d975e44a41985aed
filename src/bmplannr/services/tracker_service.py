from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from bmplannr.app_logger import get_logger
from bmplannr.config.settings import settings
from bmplannr.core.calculation import (
    PassingRequirements,
    check_passing_requirements,
    grade_summary,
    subject_detail,
)
from bmplannr.core.curricula import CurriculumVariant, build_curriculum
from bmplannr.core.grades import GradeRecord, GradeType, ValidationError, validate_grade
from bmplannr.core.scheduling import (
    ScheduledTest,
    TestStatus,
    TestType,
    grade_from_test,
    transition,
    upcoming_tests,
    validate_scheduled_test,
)
from bmplannr.services import records
from bmplannr.services.records import BMSettings
from bmplannr.services.store import GRADES, SCHEDULED_TESTS, SETTINGS, RecordStore, StoreError

logger = get_logger("tracker")

EDITABLE_TEST_FIELDS = ("title", "description", "test_type", "scheduled_date", "duration", "weight", "semester", "subject_id")


class TrackerServiceError(Exception):
    pass


class NotFoundError(TrackerServiceError):
    pass


def _coerce_test_type(value: Any) -> Any:
    try:
        return TestType(value)
    except ValueError:
        # left as-is so validation reports it
        return value


def create_store() -> RecordStore:
    backend = settings.store_backend
    if backend == "appwrite":
        from bmplannr.services.appwrite_service import AppwriteStore

        return AppwriteStore.from_settings()
    if backend == "sqlite":
        from bmplannr.services.sqlite_store import SqliteStore

        return SqliteStore(settings.sqlite_path)
    raise TrackerServiceError(f"Unsupported BMPLANNR_STORE backend: {backend}")


class TrackerService:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    @classmethod
    def from_settings(cls) -> "TrackerService":
        return cls(create_store())

    # settings

    def get_settings(self, uid: str) -> Optional[BMSettings]:
        docs = self.store.query(SETTINGS, {"user_id": uid})
        if not docs:
            return None
        return records.settings_from_doc(docs[0])

    def save_settings(self, uid: str, bm_type: Any, study_mode: Any) -> BMSettings:
        curriculum = build_curriculum(bm_type, study_mode)
        previous = self.get_settings(uid)

        doc = self.store.upsert(
            SETTINGS,
            {
                "user_id": uid,
                "bm_type": curriculum.id.value,
                "study_mode": curriculum.study_mode.value,
            },
            conflict_key="user_id",
        )
        saved = records.settings_from_doc(doc)
        logger.info("Saved BM settings for %s: %s/%s", uid, saved.bm_type.value, saved.study_mode.value)

        if previous is not None and (previous.bm_type, previous.study_mode) != (saved.bm_type, saved.study_mode):
            removed = self._delete_all_tests(uid)
            logger.info("Curriculum changed for %s, removed %d scheduled tests", uid, removed)
        return saved

    def load_curriculum(self, uid: str) -> Optional[CurriculumVariant]:
        saved = self.get_settings(uid)
        if saved is None:
            return None
        return build_curriculum(saved.bm_type, saved.study_mode)

    def _require_curriculum(self, uid: str) -> CurriculumVariant:
        curriculum = self.load_curriculum(uid)
        if curriculum is None:
            raise TrackerServiceError("No BM type configured. Save your settings first.")
        return curriculum

    # grades

    def list_grades(self, uid: str) -> List[GradeRecord]:
        return [records.grade_from_doc(doc) for doc in self.store.query(GRADES, {"user_id": uid}, order_by="created_at")]

    def add_grade(self, uid: str, data: Mapping) -> GradeRecord:
        candidate = {**data, "user_id": uid}
        existing = self.list_grades(uid)
        errors = validate_grade(candidate, existing)

        curriculum = self.load_curriculum(uid)
        subject_id = candidate.get("subject_id")
        if curriculum is not None and subject_id and subject_id not in curriculum.subject_ids():
            errors.append(f"Unknown subject for {curriculum.id.value}: {subject_id}")

        if errors:
            logger.warning("Rejected grade for %s: %s", uid, "; ".join(errors))
            raise ValidationError(errors)

        grade = GradeRecord(
            user_id=uid,
            subject_id=subject_id,
            type=GradeType(candidate["type"]),
            value=float(candidate["value"]),
            semester=candidate.get("semester"),
            name=candidate.get("name"),
            weight=candidate.get("weight"),
            date_taken=candidate.get("date_taken"),
            description=candidate.get("description"),
            duration=candidate.get("duration"),
        )
        doc = self.store.insert(GRADES, records.grade_to_doc(grade))
        logger.info("Added %s grade %.2f for %s in %s", grade.type.value, grade.value, uid, grade.subject_id)
        return records.grade_from_doc(doc)

    def delete_grade(self, uid: str, grade_id: str) -> None:
        doc = self.store.get(GRADES, grade_id)
        if not doc or doc.get("user_id") != uid:
            raise NotFoundError(f"Grade not found: {grade_id}")
        self.store.delete(GRADES, grade_id)
        logger.info("Deleted grade %s for %s", grade_id, uid)

    # calculations

    def summary(self, uid: str) -> Dict:
        curriculum = self._require_curriculum(uid)
        return grade_summary(curriculum, self.list_grades(uid))

    def subject_detail(self, uid: str, subject_id: str) -> Dict:
        curriculum = self._require_curriculum(uid)
        detail = subject_detail(curriculum, subject_id, self.list_grades(uid))
        if detail is None:
            raise NotFoundError(f"Subject not found: {subject_id}")
        detail["grades"] = [records.grade_to_json(g) for g in detail["grades"]]
        return detail

    def passing_requirements(self, uid: str) -> PassingRequirements:
        return check_passing_requirements(self.load_curriculum(uid), self.list_grades(uid))

    # scheduled tests

    def list_tests(self, uid: str) -> List[ScheduledTest]:
        docs = self.store.query(SCHEDULED_TESTS, {"user_id": uid}, order_by="scheduled_date")
        return [records.scheduled_test_from_doc(doc) for doc in docs]

    def get_test(self, uid: str, test_id: str) -> ScheduledTest:
        doc = self.store.get(SCHEDULED_TESTS, test_id)
        if not doc or doc.get("user_id") != uid:
            raise NotFoundError(f"Scheduled test not found: {test_id}")
        return records.scheduled_test_from_doc(doc)

    def add_test(self, uid: str, data: Mapping) -> ScheduledTest:
        errors = validate_scheduled_test(data)
        if errors:
            logger.warning("Rejected scheduled test for %s: %s", uid, "; ".join(errors))
            raise ValidationError(errors)

        test = ScheduledTest(
            user_id=uid,
            subject_id=data["subject_id"],
            title=str(data["title"]).strip(),
            test_type=TestType(data["test_type"]),
            scheduled_date=data["scheduled_date"],
            description=data.get("description"),
            duration=data.get("duration"),
            weight=data.get("weight"),
            semester=data.get("semester"),
        )
        doc = self.store.insert(SCHEDULED_TESTS, records.scheduled_test_to_doc(test))
        logger.info("Scheduled %s '%s' for %s", test.test_type.value, test.title, uid)
        return records.scheduled_test_from_doc(doc)

    def update_test(self, uid: str, test_id: str, changes: Mapping) -> ScheduledTest:
        current = self.get_test(uid, test_id)
        if current.status is not TestStatus.SCHEDULED:
            raise TrackerServiceError(f"Only scheduled tests can be edited, test is {current.status.value}")

        allowed = {key: value for key, value in changes.items() if key in EDITABLE_TEST_FIELDS}
        if "test_type" in allowed:
            allowed["test_type"] = _coerce_test_type(allowed["test_type"])
        updated = replace(current, **allowed)
        errors = validate_scheduled_test(updated)
        if errors:
            raise ValidationError(errors)

        doc = records.scheduled_test_to_doc(updated)
        return records.scheduled_test_from_doc(
            self.store.update(SCHEDULED_TESTS, test_id, {key: doc[key] for key in allowed})
        )

    def cancel_test(self, uid: str, test_id: str) -> ScheduledTest:
        cancelled = transition(self.get_test(uid, test_id), TestStatus.CANCELLED)
        doc = self.store.update(SCHEDULED_TESTS, test_id, {"status": cancelled.status.value})
        logger.info("Cancelled scheduled test %s for %s", test_id, uid)
        return records.scheduled_test_from_doc(doc)

    def delete_test(self, uid: str, test_id: str) -> None:
        self.get_test(uid, test_id)
        self.store.delete(SCHEDULED_TESTS, test_id)

    def convert_test_to_grade(self, uid: str, test_id: str, value: float) -> Dict[str, Any]:
        test = self.get_test(uid, test_id)
        grade = grade_from_test(test, value)
        saved = self.add_grade(uid, records.grade_to_doc(grade))
        completed = transition(test, TestStatus.COMPLETED, grade_id=saved.id)
        try:
            doc = self.store.update(
                SCHEDULED_TESTS,
                test_id,
                {"status": completed.status.value, "grade_id": completed.grade_id},
            )
        except StoreError:
            logger.error("Completing scheduled test %s failed, removing grade %s", test_id, saved.id)
            self.store.delete(GRADES, saved.id)
            raise
        logger.info("Converted scheduled test %s into grade %s for %s", test_id, saved.id, uid)
        return {"grade": saved, "test": records.scheduled_test_from_doc(doc)}

    def upcoming_tests(self, uid: str, days: int = 7, now: Optional[datetime] = None) -> List[ScheduledTest]:
        return upcoming_tests(self.list_tests(uid), days=days, now=now)

    def _delete_all_tests(self, uid: str) -> int:
        docs = self.store.query(SCHEDULED_TESTS, {"user_id": uid})
        for doc in docs:
            self.store.delete(SCHEDULED_TESTS, doc["id"])
        return len(docs)

