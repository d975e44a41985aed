import unittest
from datetime import date, datetime, timedelta, timezone

from bmplannr.core import scheduling
from bmplannr.core.grades import GradeType
from bmplannr.core.scheduling import (
    InvalidTransitionError,
    ScheduledTest,
    TestStatus,
    TestType,
    grade_from_test,
    is_date_available,
    transition,
    upcoming_tests,
    validate_scheduled_test,
)

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)


def _scheduled(title="Algebra", subject_id="m", test_type=TestType.TEST, when=NOW, **kwargs):
    return ScheduledTest("u1", subject_id, title, test_type, when, **kwargs)


class ValidateScheduledTestTests(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_scheduled_test(_scheduled(weight=2, semester=3, duration=45)), [])

    def test_collects_errors(self):
        errors = validate_scheduled_test(
            {"title": " ", "subject_id": "", "test_type": "quiz", "scheduled_date": "tomorrow"}
        )
        self.assertEqual(len(errors), 4)
        self.assertIn("Unknown test type: quiz", errors)

    def test_optional_field_ranges(self):
        self.assertEqual(len(validate_scheduled_test(_scheduled(weight=0))), 1)
        self.assertEqual(len(validate_scheduled_test(_scheduled(semester=5))), 1)
        self.assertEqual(len(validate_scheduled_test(_scheduled(duration=-10))), 1)


class TransitionTests(unittest.TestCase):
    def test_cancel(self):
        cancelled = transition(_scheduled(), TestStatus.CANCELLED)
        self.assertIs(cancelled.status, TestStatus.CANCELLED)

    def test_complete_with_grade(self):
        completed = transition(_scheduled(), TestStatus.COMPLETED, grade_id="g1")
        self.assertEqual(completed.grade_id, "g1")

    def test_final_states(self):
        cancelled = transition(_scheduled(), TestStatus.CANCELLED)
        with self.assertRaises(InvalidTransitionError):
            transition(cancelled, TestStatus.COMPLETED)
        completed = transition(_scheduled(), TestStatus.COMPLETED)
        with self.assertRaises(InvalidTransitionError):
            transition(completed, TestStatus.CANCELLED)


class GradeFromTestTests(unittest.TestCase):
    def test_exam_becomes_exam_grade(self):
        grade = grade_from_test(_scheduled(test_type=TestType.EXAM, subject_id="d"), 5.0)
        self.assertIs(grade.type, GradeType.EXAM)
        self.assertEqual(grade.subject_id, "d")

    def test_other_types_become_individual_grades(self):
        test = _scheduled(test_type=TestType.PRESENTATION, weight=2, semester=2, duration=30, description="Slides")
        grade = grade_from_test(test, 4.5)
        self.assertIs(grade.type, GradeType.INDIVIDUAL)
        self.assertEqual(grade.value, 4.5)
        self.assertEqual(grade.weight, 2)
        self.assertEqual(grade.semester, 2)
        self.assertEqual(grade.name, "Algebra")
        self.assertEqual(grade.duration, "30")
        self.assertEqual(grade.date_taken, "2026-03-10T08:00:00+00:00")

    def test_only_scheduled_tests(self):
        with self.assertRaises(InvalidTransitionError):
            grade_from_test(transition(_scheduled(), TestStatus.CANCELLED), 4.0)


class CalendarTests(unittest.TestCase):
    def setUp(self):
        self.tests = [
            _scheduled("in ten days", when=NOW + timedelta(days=10)),
            _scheduled("in three days", when=NOW + timedelta(days=3)),
            _scheduled("yesterday", when=NOW - timedelta(days=1)),
            _scheduled("cancelled", when=NOW + timedelta(days=2), status=TestStatus.CANCELLED),
            _scheduled("tomorrow", subject_id="d", when=NOW + timedelta(days=1)),
        ]

    def test_upcoming_window_sorted(self):
        titles = [t.title for t in upcoming_tests(self.tests, now=NOW)]
        self.assertEqual(titles, ["tomorrow", "in three days"])

    def test_upcoming_custom_window(self):
        self.assertEqual(len(upcoming_tests(self.tests, days=14, now=NOW)), 3)

    def test_upcoming_accepts_naive_dates(self):
        naive = _scheduled("naive", when=datetime(2026, 3, 11, 9, 0))
        self.assertEqual(upcoming_tests([naive], now=NOW), [naive])

    def test_for_subject(self):
        self.assertEqual([t.title for t in scheduling.tests_for_subject(self.tests, "d")], ["tomorrow"])

    def test_in_month(self):
        self.assertEqual(len(scheduling.tests_in_month(self.tests, 2026, 3)), 5)
        self.assertEqual(scheduling.tests_in_month(self.tests, 2026, 4), [])

    def test_date_availability(self):
        self.assertFalse(is_date_available(self.tests, date(2026, 3, 11)))
        self.assertTrue(is_date_available(self.tests, date(2026, 3, 12)))
        self.assertTrue(is_date_available(self.tests, datetime(2026, 3, 15, 12, 0)))


if __name__ == "__main__":
    unittest.main()
