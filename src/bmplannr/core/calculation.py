from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from bmplannr.core.curricula import CurriculumVariant
from bmplannr.core.grades import PASSING_GRADE, GradeRecord, grade_status, round_to_tenth
from bmplannr.core.subjects import (
    InterdisciplinarySubject,
    NaturalScienceSubject,
    calculate_final_grade,
    describe_subject,
    experience_grade,
    grades_for_subject,
    semester_averages,
)


MIN_OVERALL_GRADE = 4.0
MAX_INSUFFICIENT_GRADES = 2
MAX_DEVIATION_SUM = 2.0


@dataclass
class PassingRequirements:
    passed: bool
    issues: List[str] = field(default_factory=list)
    overall_grade: float = 0
    insufficient_grades: int = 0
    deviation_sum: float = 0

    def to_dict(self) -> Dict:
        return asdict(self)


def subject_final_grade(curriculum: Optional[CurriculumVariant], subject_id: str, grades: Iterable[GradeRecord]) -> float:
    if curriculum is None:
        return 0
    subject = curriculum.subject(subject_id)
    if subject is None:
        return 0
    return calculate_final_grade(subject, grades)


def subject_experience_grade(
    curriculum: Optional[CurriculumVariant], subject_id: str, grades: Iterable[GradeRecord]
) -> float:
    subject = curriculum.subject(subject_id) if curriculum else None
    if subject is None:
        return 0
    return experience_grade(subject, grades)


def subject_semester_averages(
    curriculum: Optional[CurriculumVariant], subject_id: str, grades: Iterable[GradeRecord]
) -> List[Tuple[int, float]]:
    subject = curriculum.subject(subject_id) if curriculum else None
    if subject is None:
        return []
    return semester_averages(subject, grades)


def ida_grade(curriculum: Optional[CurriculumVariant], grades: Iterable[GradeRecord]) -> float:
    if curriculum is None:
        return 0
    for subject in curriculum.subjects:
        if isinstance(subject, InterdisciplinarySubject):
            return calculate_final_grade(subject, grades)
    return 0


def natural_science_grade(curriculum: Optional[CurriculumVariant], grades: Iterable[GradeRecord]) -> float:
    if curriculum is None:
        return 0
    for subject in curriculum.subjects:
        if isinstance(subject, NaturalScienceSubject):
            return calculate_final_grade(subject, grades)
    return 0


def _graded_finals(curriculum: CurriculumVariant, grades: List[GradeRecord], core_only: bool) -> List[float]:
    finals = []
    for subject in curriculum.subjects:
        if core_only and not subject.is_core:
            continue
        final = calculate_final_grade(subject, grades)
        if final > 0:
            finals.append(final)
    return finals


def overall_grade(curriculum: Optional[CurriculumVariant], grades: Iterable[GradeRecord]) -> float:
    """Mean of all graded subjects, rounded to the tenth. 0 when nothing is graded yet."""
    if curriculum is None:
        return 0
    finals = _graded_finals(curriculum, list(grades), core_only=False)
    if not finals:
        return 0
    return round_to_tenth(sum(finals) / len(finals))


def check_passing_requirements(
    curriculum: Optional[CurriculumVariant], grades: Iterable[GradeRecord]
) -> PassingRequirements:
    """
    Three rules, all required:
      1. overall grade >= 4.0
      2. at most two core subject grades below 4.0
      3. sum of (4.0 - grade) over those insufficient grades <= 2.0
    IDAF and IDPA never count on their own; the combined IDA grade does.
    """
    if curriculum is None:
        return PassingRequirements(passed=False, issues=["No BM type configured"])

    grades = list(grades)
    finals = _graded_finals(curriculum, grades, core_only=True)
    issues: List[str] = []

    overall = overall_grade(curriculum, grades)
    if overall < MIN_OVERALL_GRADE:
        issues.append(f"Overall grade too low: {overall:.1f} (min. {MIN_OVERALL_GRADE:.1f})")

    insufficient = [g for g in finals if g < PASSING_GRADE]
    if len(insufficient) > MAX_INSUFFICIENT_GRADES:
        issues.append(f"Too many insufficient grades: {len(insufficient)} (max. {MAX_INSUFFICIENT_GRADES})")

    # finals are multiples of 0.5, the rounding only strips float noise
    deviation_sum = round(sum(PASSING_GRADE - g for g in insufficient), 10)
    if deviation_sum > MAX_DEVIATION_SUM:
        issues.append(f"Deviation sum too high: {deviation_sum:.1f} (max. {MAX_DEVIATION_SUM:.1f})")

    return PassingRequirements(
        passed=not issues,
        issues=issues,
        overall_grade=overall,
        insufficient_grades=len(insufficient),
        deviation_sum=deviation_sum,
    )


def grade_summary(curriculum: CurriculumVariant, grades: Iterable[GradeRecord]) -> Dict:
    grades = list(grades)
    rows = []
    for subject in curriculum.subjects:
        final = calculate_final_grade(subject, grades)
        row = describe_subject(subject)
        row.update(
            {
                "final_grade": final,
                "status": grade_status(final),
                "grade_count": len(grades_for_subject(subject, grades)),
            }
        )
        rows.append(row)

    return {
        "bm_type": curriculum.id.value,
        "bm_name": curriculum.name,
        "study_mode": curriculum.study_mode.value,
        "subjects": rows,
        "overall_grade": overall_grade(curriculum, grades),
        "passing": check_passing_requirements(curriculum, grades).to_dict(),
    }


def subject_detail(curriculum: CurriculumVariant, subject_id: str, grades: Iterable[GradeRecord]) -> Optional[Dict]:
    subject = curriculum.subject(subject_id)
    if subject is None:
        return None
    grades = list(grades)
    row = describe_subject(subject)
    final = calculate_final_grade(subject, grades)
    row.update(
        {
            "final_grade": final,
            "status": grade_status(final),
            "experience_grade": experience_grade(subject, grades),
            "semester_averages": [
                {"semester": semester, "average": average}
                for semester, average in semester_averages(subject, grades)
            ],
            "grades": grades_for_subject(subject, grades),
        }
    )
    if isinstance(subject, InterdisciplinarySubject):
        row["idaf_grade"] = calculate_final_grade(subject.idaf, grades)
        row["idpa_grade"] = calculate_final_grade(subject.idpa, grades)
    return row
