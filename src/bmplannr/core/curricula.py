from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from bmplannr.core.grades import BMType, StudyMode
from bmplannr.core.subjects import (
    InterdisciplinarySubject,
    NaturalScienceSubject,
    PartTimeComponent,
    StandardSubject,
    Subject,
)


class UnknownCurriculumError(ValueError):
    pass


@dataclass(frozen=True)
class CurriculumVariant:
    id: BMType
    name: str
    study_mode: StudyMode
    subjects: Tuple[Subject, ...]

    def subject(self, subject_id: str) -> Optional[Subject]:
        for subject in self.subjects:
            if subject.id == subject_id:
                return subject
            if isinstance(subject, InterdisciplinarySubject):
                if subject.idaf.id == subject_id:
                    return subject.idaf
                if subject.idpa.id == subject_id:
                    return subject.idpa
        return None

    def subject_ids(self) -> List[str]:
        """Every id a grade may be recorded against."""
        ids: List[str] = []
        for subject in self.subjects:
            if isinstance(subject, NaturalScienceSubject):
                ids.extend(c.id for c in subject.components)
            elif isinstance(subject, InterdisciplinarySubject):
                ids.extend([subject.idaf.id, subject.idpa.id])
            else:
                ids.append(subject.id)
        return ids


NATURAL_SCIENCE_COMPONENTS: Tuple[PartTimeComponent, ...] = (
    PartTimeComponent("nw-chemie", "Chemie", "CH", 0.33, (1,)),
    PartTimeComponent("nw-physik", "Physik", "PH", 0.67, (1, 2)),
)


def _languages() -> List[Subject]:
    return [
        StandardSubject("d", "Deutsch", "D", True, True),
        StandardSubject("f", "Französisch", "F", True, True),
        StandardSubject("e", "Englisch", "E", True, True),
    ]


def _natural_science(study_mode: StudyMode) -> Subject:
    if study_mode is StudyMode.PARTTIME:
        return NaturalScienceSubject("nw", "Naturwissenschaften", "NW", True, True, NATURAL_SCIENCE_COMPONENTS)
    return StandardSubject("nw", "Naturwissenschaften", "NW", True, True)


def _tals(study_mode: StudyMode) -> List[Subject]:
    return [
        *_languages(),
        StandardSubject("m-g", "Mathematik Grundlagen", "M-G", True, True),
        StandardSubject("m-s", "Mathematik Schwerpunkt", "M-S", True, True),
        StandardSubject("gp", "Geschichte & Politik", "GP", True, True),
        StandardSubject("wr", "Wirtschaft & Recht", "WR", True, True),
        _natural_science(study_mode),
    ]


def _wd_d(study_mode: StudyMode) -> List[Subject]:
    return [
        *_languages(),
        StandardSubject("m", "Mathematik", "M", True, True),
        StandardSubject("fr", "Finanz- & Rechnungswesen", "FR", True, True),
        StandardSubject("wr", "Wirtschaft & Recht Schwerpunkt", "WR", True, True),
        StandardSubject("wr-e", "Wirtschaft & Recht Ergänzung", "WR-E", False, False),
        StandardSubject("gp", "Geschichte & Politik", "GP", True, True),
    ]


def _arte(study_mode: StudyMode) -> List[Subject]:
    return [
        *_languages(),
        StandardSubject("m", "Mathematik", "M", True, True),
        StandardSubject("gkk", "Gestaltung / Kunst / Kultur", "GKK", True, True),
        StandardSubject("ik", "Information & Kommunikation", "IK", True, True),
        StandardSubject("gp", "Geschichte & Politik", "GP", True, True),
        StandardSubject("tu", "Technik & Umwelt", "TU", True, True),
    ]


def _gesundheit(study_mode: StudyMode) -> List[Subject]:
    return [
        *_languages(),
        StandardSubject("m", "Mathematik", "M", True, True),
        StandardSubject("sw", "Sozialwissenschaften", "SW", True, True),
        StandardSubject("gp", "Geschichte & Politik", "GP", True, True),
        StandardSubject("wr", "Wirtschaft & Recht", "WR", True, True),
        _natural_science(study_mode),
    ]


CATALOGS: Dict[BMType, Tuple[str, Callable[[StudyMode], List[Subject]]]] = {
    BMType.TALS: ("BM 2 Technik, Architektur, Life Sciences (TALS)", _tals),
    BMType.WD_D: ("BM 2 Dienstleistungen (WD-D)", _wd_d),
    BMType.ARTE: ("BM 2 Gestaltung & Kunst (ARTE)", _arte),
    BMType.GESUNDHEIT: ("BM 2 Gesundheit & Soziales", _gesundheit),
}


def build_curriculum(bm_type: Union[BMType, str], study_mode: Union[StudyMode, str]) -> CurriculumVariant:
    try:
        variant = BMType(bm_type)
    except ValueError as exc:
        raise UnknownCurriculumError(f"Unknown BM type: {bm_type}") from exc
    try:
        mode = StudyMode(study_mode)
    except ValueError as exc:
        raise UnknownCurriculumError(f"Unknown study mode: {study_mode}") from exc

    name, catalog = CATALOGS[variant]
    subjects = [*catalog(mode), InterdisciplinarySubject()]
    return CurriculumVariant(id=variant, name=name, study_mode=mode, subjects=tuple(subjects))


def list_curricula() -> List[Dict[str, str]]:
    return [{"id": variant.value, "name": name} for variant, (name, _) in CATALOGS.items()]
