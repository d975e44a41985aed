import unittest
from datetime import datetime, timedelta, timezone

from bmplannr.core.curricula import UnknownCurriculumError
from bmplannr.core.grades import BMType, GradeType, StudyMode, ValidationError
from bmplannr.core.scheduling import InvalidTransitionError, TestStatus, TestType
from bmplannr.services.sqlite_store import SqliteStore
from bmplannr.services.store import GRADES, SCHEDULED_TESTS, StoreError
from bmplannr.services.tracker_service import NotFoundError, TrackerService, TrackerServiceError

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


class FailingTestUpdateStore(SqliteStore):
    fail_test_updates = True

    def update(self, collection, record_id, partial):
        if collection == SCHEDULED_TESTS and self.fail_test_updates:
            raise StoreError("disk I/O error")
        return super().update(collection, record_id, partial)


def _grade(subject_id="d", value=4.5, **overrides):
    data = {"subject_id": subject_id, "type": "individual", "value": value, "semester": 1}
    data.update(overrides)
    return data


def _test(title="Algebra", subject_id="m", when=NOW + timedelta(days=2), **overrides):
    data = {"title": title, "subject_id": subject_id, "test_type": "test", "scheduled_date": when}
    data.update(overrides)
    return data


class TrackerServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.store = SqliteStore(":memory:")
        self.tracker = TrackerService(self.store)
        self.tracker.save_settings("u1", "arte", "fulltime")

    def tearDown(self):
        self.store.conn.close()


class SettingsTests(TrackerServiceTestCase):
    def test_saved_settings(self):
        saved = self.tracker.get_settings("u1")
        self.assertIs(saved.bm_type, BMType.ARTE)
        self.assertIs(saved.study_mode, StudyMode.FULLTIME)
        self.assertIsNone(self.tracker.get_settings("u2"))

    def test_unknown_variant_is_not_saved(self):
        with self.assertRaises(UnknownCurriculumError):
            self.tracker.save_settings("u1", "bm3", "fulltime")
        self.assertIs(self.tracker.get_settings("u1").bm_type, BMType.ARTE)

    def test_changing_variant_removes_scheduled_tests(self):
        self.tracker.add_test("u1", _test())
        self.tracker.save_settings("u1", "tals", "parttime")
        self.assertEqual(self.tracker.list_tests("u1"), [])
        self.assertEqual(len(self.store.query("bm_settings", {"user_id": "u1"})), 1)

    def test_changing_study_mode_removes_scheduled_tests(self):
        self.tracker.add_test("u1", _test())
        self.tracker.save_settings("u1", "arte", "parttime")
        self.assertEqual(self.tracker.list_tests("u1"), [])
        self.assertIs(self.tracker.get_settings("u1").study_mode, StudyMode.PARTTIME)

    def test_saving_same_variant_keeps_tests(self):
        self.tracker.add_test("u1", _test())
        self.tracker.save_settings("u1", "arte", "fulltime")
        self.assertEqual(len(self.tracker.list_tests("u1")), 1)

    def test_grades_survive_variant_change(self):
        self.tracker.add_grade("u1", _grade())
        self.tracker.save_settings("u1", "tals", "fulltime")
        self.assertEqual(len(self.tracker.list_grades("u1")), 1)

    def test_load_curriculum(self):
        self.assertEqual(self.tracker.load_curriculum("u1").id, BMType.ARTE)
        self.assertIsNone(self.tracker.load_curriculum("u2"))


class GradeTests(TrackerServiceTestCase):
    def test_add_and_list(self):
        grade = self.tracker.add_grade("u1", _grade(weight=2, name="Essay"))
        self.assertTrue(grade.id)
        self.assertIs(grade.type, GradeType.INDIVIDUAL)
        self.assertEqual(grade.weight, 2.0)
        self.assertEqual([g.id for g in self.tracker.list_grades("u1")], [grade.id])
        self.assertEqual(self.tracker.list_grades("u2"), [])

    def test_invalid_grade_is_not_stored(self):
        with self.assertRaises(ValidationError) as ctx:
            self.tracker.add_grade("u1", _grade(value=7, semester=None))
        self.assertEqual(len(ctx.exception.errors), 2)
        self.assertEqual(self.tracker.list_grades("u1"), [])

    def test_subject_must_belong_to_curriculum(self):
        with self.assertRaises(ValidationError) as ctx:
            self.tracker.add_grade("u1", _grade(subject_id="nw-physik"))
        self.assertEqual(ctx.exception.errors, ["Unknown subject for arte: nw-physik"])

    def test_single_idpa_grade(self):
        self.tracker.add_grade("u1", _grade("idpa", 5.0, semester=4))
        with self.assertRaises(ValidationError):
            self.tracker.add_grade("u1", _grade("idpa", 5.5, semester=4))
        self.tracker.add_grade("u2", _grade("idpa", 5.5, semester=4))

    def test_delete_grade(self):
        grade = self.tracker.add_grade("u1", _grade())
        with self.assertRaises(NotFoundError):
            self.tracker.delete_grade("u2", grade.id)
        self.tracker.delete_grade("u1", grade.id)
        self.assertEqual(self.tracker.list_grades("u1"), [])
        with self.assertRaises(NotFoundError):
            self.tracker.delete_grade("u1", grade.id)


class CalculationTests(TrackerServiceTestCase):
    def test_summary(self):
        self.tracker.add_grade("u1", _grade("d", 4.5))
        self.tracker.add_grade("u1", _grade("f", 3.0))
        self.tracker.add_grade("u1", _grade("e", 5.0))
        summary = self.tracker.summary("u1")
        self.assertEqual(summary["overall_grade"], 4.2)
        self.assertTrue(summary["passing"]["passed"])

    def test_summary_requires_settings(self):
        with self.assertRaises(TrackerServiceError):
            self.tracker.summary("u2")

    def test_subject_detail(self):
        self.tracker.add_grade("u1", _grade("d", 4.0))
        self.tracker.add_grade("u1", _grade("d", 5.0, type="exam", semester=None))
        detail = self.tracker.subject_detail("u1", "d")
        self.assertEqual(detail["final_grade"], 4.5)
        self.assertEqual([g["type"] for g in detail["grades"]], ["individual", "exam"])
        with self.assertRaises(NotFoundError):
            self.tracker.subject_detail("u1", "nw")

    def test_passing_without_settings(self):
        result = self.tracker.passing_requirements("u2")
        self.assertFalse(result.passed)
        self.assertEqual(result.issues, ["No BM type configured"])


class ScheduledTestTests(TrackerServiceTestCase):
    def test_add_and_list_sorted(self):
        later = self.tracker.add_test("u1", _test("Later", when=NOW + timedelta(days=5)))
        sooner = self.tracker.add_test("u1", _test("Sooner", when=NOW + timedelta(days=1)))
        self.assertEqual([t.id for t in self.tracker.list_tests("u1")], [sooner.id, later.id])
        self.assertIs(later.status, TestStatus.SCHEDULED)
        self.assertEqual(later.scheduled_date, NOW + timedelta(days=5))

    def test_invalid_test_rejected(self):
        with self.assertRaises(ValidationError):
            self.tracker.add_test("u1", _test(title="", test_type="quiz"))
        self.assertEqual(self.tracker.list_tests("u1"), [])

    def test_update(self):
        test = self.tracker.add_test("u1", _test())
        updated = self.tracker.update_test("u1", test.id, {"title": "Geometry", "test_type": "exam", "status": "cancelled"})
        self.assertEqual(updated.title, "Geometry")
        self.assertIs(updated.test_type, TestType.EXAM)
        self.assertIs(updated.status, TestStatus.SCHEDULED)

    def test_update_validates(self):
        test = self.tracker.add_test("u1", _test())
        with self.assertRaises(ValidationError):
            self.tracker.update_test("u1", test.id, {"test_type": "quiz"})

    def test_cancel(self):
        test = self.tracker.add_test("u1", _test())
        cancelled = self.tracker.cancel_test("u1", test.id)
        self.assertIs(cancelled.status, TestStatus.CANCELLED)
        with self.assertRaises(InvalidTransitionError):
            self.tracker.cancel_test("u1", test.id)
        with self.assertRaises(TrackerServiceError):
            self.tracker.update_test("u1", test.id, {"title": "Again"})

    def test_other_users_test_not_found(self):
        test = self.tracker.add_test("u1", _test())
        with self.assertRaises(NotFoundError):
            self.tracker.get_test("u2", test.id)
        with self.assertRaises(NotFoundError):
            self.tracker.delete_test("u2", test.id)
        self.tracker.delete_test("u1", test.id)
        self.assertEqual(self.tracker.list_tests("u1"), [])

    def test_convert_exam_to_grade(self):
        test = self.tracker.add_test("u1", _test("Final", subject_id="d", test_type="exam"))
        result = self.tracker.convert_test_to_grade("u1", test.id, 5.0)
        grade, completed = result["grade"], result["test"]
        self.assertIs(grade.type, GradeType.EXAM)
        self.assertEqual(grade.name, "Final")
        self.assertIs(completed.status, TestStatus.COMPLETED)
        self.assertEqual(completed.grade_id, grade.id)
        with self.assertRaises(InvalidTransitionError):
            self.tracker.convert_test_to_grade("u1", test.id, 5.0)

    def test_convert_with_invalid_value(self):
        test = self.tracker.add_test("u1", _test(semester=1))
        with self.assertRaises(ValidationError):
            self.tracker.convert_test_to_grade("u1", test.id, 7.0)
        self.assertIs(self.tracker.get_test("u1", test.id).status, TestStatus.SCHEDULED)
        self.assertEqual(self.tracker.list_grades("u1"), [])

    def test_failed_completion_removes_grade(self):
        store = FailingTestUpdateStore(":memory:")
        self.addCleanup(store.conn.close)
        tracker = TrackerService(store)
        tracker.save_settings("u1", "arte", "fulltime")
        test = tracker.add_test("u1", _test("IDPA", subject_id="idpa", semester=4))

        with self.assertRaises(StoreError):
            tracker.convert_test_to_grade("u1", test.id, 5.0)
        self.assertEqual(store.query(GRADES, {"user_id": "u1"}), [])
        self.assertIs(tracker.get_test("u1", test.id).status, TestStatus.SCHEDULED)

        store.fail_test_updates = False
        result = tracker.convert_test_to_grade("u1", test.id, 5.0)
        self.assertEqual([g.id for g in tracker.list_grades("u1")], [result["grade"].id])
        self.assertIs(result["test"].status, TestStatus.COMPLETED)

    def test_upcoming(self):
        self.tracker.add_test("u1", _test("Soon", when=NOW + timedelta(days=1)))
        self.tracker.add_test("u1", _test("Far", when=NOW + timedelta(days=20)))
        self.assertEqual([t.title for t in self.tracker.upcoming_tests("u1", now=NOW)], ["Soon"])
        self.assertEqual(len(self.tracker.upcoming_tests("u1", days=30, now=NOW)), 2)


if __name__ == "__main__":
    unittest.main()
