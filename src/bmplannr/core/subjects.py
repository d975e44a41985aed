from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Tuple, Union

from bmplannr.core.grades import (
    IDAF_ID,
    IDPA_ID,
    SEMESTERS,
    GradeRecord,
    GradeType,
    round_to_half,
)


class SubjectType(str, Enum):
    STANDARD = "standard"
    NATURAL_SCIENCE = "natural_science"
    IDAF = "idaf"
    IDPA = "idpa"
    IDA = "ida"


@dataclass(frozen=True)
class PartTimeComponent:
    id: str
    name: str
    short_name: str
    weight: float
    semesters: Tuple[int, ...]


@dataclass(frozen=True)
class StandardSubject:
    id: str
    name: str
    short_name: str
    has_exam: bool
    is_core: bool
    kind: SubjectType = SubjectType.STANDARD


@dataclass(frozen=True)
class NaturalScienceSubject:
    id: str
    name: str
    short_name: str
    has_exam: bool
    is_core: bool
    components: Tuple[PartTimeComponent, ...] = ()
    kind: SubjectType = SubjectType.NATURAL_SCIENCE


@dataclass(frozen=True)
class InterdisciplinaryLeaf:
    """IDAF or IDPA: graded on its own, reported only through the IDA grade."""

    id: str
    name: str
    short_name: str
    kind: SubjectType
    has_exam: bool = False
    is_core: bool = False


IDAF = InterdisciplinaryLeaf(IDAF_ID, "Interdisziplinäre Arbeit in den Fächern", "IDAF", SubjectType.IDAF)
IDPA = InterdisciplinaryLeaf(IDPA_ID, "Interdisziplinäre Projektarbeit", "IDPA", SubjectType.IDPA)


@dataclass(frozen=True)
class InterdisciplinarySubject:
    id: str = "ida"
    name: str = "IDA-Note (IDAF + IDPA)"
    short_name: str = "IDA"
    has_exam: bool = False
    is_core: bool = True
    idaf: InterdisciplinaryLeaf = field(default=IDAF)
    idpa: InterdisciplinaryLeaf = field(default=IDPA)
    kind: SubjectType = SubjectType.IDA


Subject = Union[StandardSubject, NaturalScienceSubject, InterdisciplinarySubject, InterdisciplinaryLeaf]


def grade_subject_ids(subject: Subject) -> FrozenSet[str]:
    if isinstance(subject, NaturalScienceSubject):
        return frozenset({subject.id, *(c.id for c in subject.components)})
    if isinstance(subject, InterdisciplinarySubject):
        return frozenset({subject.id, subject.idaf.id, subject.idpa.id})
    return frozenset({subject.id})


def grades_for_subject(subject: Subject, grades: Iterable[GradeRecord]) -> List[GradeRecord]:
    ids = grade_subject_ids(subject)
    return [g for g in grades if g.subject_id in ids]


def _individual(grades: Iterable[GradeRecord]) -> List[GradeRecord]:
    return [g for g in grades if g.type == GradeType.INDIVIDUAL]


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


def semester_averages(subject: Subject, grades: Iterable[GradeRecord]) -> List[Tuple[int, float]]:
    """Weighted, half-rounded average per semester that has at least one individual grade."""
    own = [g for g in _individual(grades) if g.subject_id == subject.id]
    averages: List[Tuple[int, float]] = []
    for semester in SEMESTERS:
        in_semester = [g for g in own if g.semester == semester]
        if not in_semester:
            continue
        total_weight = sum(g.effective_weight for g in in_semester)
        weighted_sum = sum(g.value * g.effective_weight for g in in_semester)
        averages.append((semester, round_to_half(weighted_sum / total_weight)))
    return averages


def experience_grade(subject: Subject, grades: Iterable[GradeRecord]) -> float:
    averages = semester_averages(subject, grades)
    if not averages:
        return 0
    return round_to_half(_mean([avg for _, avg in averages]))


def _standard_final(subject: StandardSubject, grades: List[GradeRecord]) -> float:
    if not any(g.subject_id == subject.id for g in _individual(grades)):
        return 0

    experience = experience_grade(subject, grades)
    exam = next((g for g in grades if g.subject_id == subject.id and g.type == GradeType.EXAM), None)
    if subject.has_exam and exam is not None:
        return round_to_half((experience + exam.value) / 2)
    return experience


def _natural_science_final(subject: NaturalScienceSubject, grades: List[GradeRecord]) -> float:
    weighted_sum = 0.0
    total_weight = 0.0
    for component in subject.components:
        values = [g.value for g in grades if g.subject_id == component.id]
        if values:
            weighted_sum += _mean(values) * component.weight
            total_weight += component.weight
    if total_weight <= 0:
        return 0
    return round_to_half(weighted_sum / total_weight)


def _leaf_final(subject: InterdisciplinaryLeaf, grades: List[GradeRecord]) -> float:
    values = [g.value for g in _individual(grades) if g.subject_id == subject.id]
    if not values:
        return 0
    return round_to_half(_mean(values))


def _ida_final(subject: InterdisciplinarySubject, grades: List[GradeRecord]) -> float:
    idaf = _leaf_final(subject.idaf, grades)
    idpa = _leaf_final(subject.idpa, grades)
    if idaf == 0 and idpa == 0:
        return 0
    if idaf == 0:
        return idpa
    if idpa == 0:
        return idaf
    return round_to_half((idaf + idpa) / 2)


def calculate_final_grade(subject: Subject, grades: Iterable[GradeRecord]) -> float:
    """
    Final grade of one subject out of the user's full grade set.
    0 means the subject has no grade yet; real grades are always >= 1.0.
    """
    own = grades_for_subject(subject, grades)
    if isinstance(subject, StandardSubject):
        return _standard_final(subject, own)
    if isinstance(subject, NaturalScienceSubject):
        return _natural_science_final(subject, own)
    if isinstance(subject, InterdisciplinarySubject):
        return _ida_final(subject, own)
    if isinstance(subject, InterdisciplinaryLeaf):
        return _leaf_final(subject, own)
    raise TypeError(f"Unsupported subject: {subject!r}")


def describe_subject(subject: Subject) -> Dict:
    row = {
        "id": subject.id,
        "name": subject.name,
        "short_name": subject.short_name,
        "kind": subject.kind.value,
        "has_exam": subject.has_exam,
        "is_core": subject.is_core,
    }
    if isinstance(subject, NaturalScienceSubject):
        row["components"] = [
            {
                "id": c.id,
                "name": c.name,
                "short_name": c.short_name,
                "weight": c.weight,
                "semesters": list(c.semesters),
            }
            for c in subject.components
        ]
    if isinstance(subject, InterdisciplinarySubject):
        row["components"] = [describe_subject(subject.idaf), describe_subject(subject.idpa)]
    return row
