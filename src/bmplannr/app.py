from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from bmplannr.app_logger import get_logger
from bmplannr.config.settings import settings
from bmplannr.core.curricula import UnknownCurriculumError, list_curricula
from bmplannr.core.grades import StudyMode, ValidationError
from bmplannr.core.scheduling import InvalidTransitionError, TestType
from bmplannr.core.subjects import describe_subject
from bmplannr.services.auth_service import AppwriteAuthService, AuthServiceError
from bmplannr.services.records import grade_to_json, scheduled_test_to_json
from bmplannr.services.store import StoreError
from bmplannr.services.tracker_service import NotFoundError, TrackerService, TrackerServiceError

logger = get_logger("api")

app = FastAPI(title="BM Planner API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_origin_regex=settings.cors_allow_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SignUpPayload(BaseModel):
    email: str
    password: str
    username: Optional[str] = None


class AuthPayload(BaseModel):
    email: str
    password: str


class SettingsPayload(BaseModel):
    bm_type: str
    study_mode: str = StudyMode.FULLTIME.value


class GradePayload(BaseModel):
    # left optional so the domain validation reports every missing field at once
    subject_id: Optional[str] = None
    type: Optional[str] = None
    value: Optional[float] = None
    semester: Optional[int] = None
    name: Optional[str] = None
    weight: Optional[float] = None
    date_taken: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[str] = None


class ScheduledTestPayload(BaseModel):
    subject_id: str
    title: str
    test_type: str = TestType.TEST.value
    scheduled_date: datetime
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    weight: Optional[float] = None
    semester: Optional[int] = None


class ScheduledTestUpdatePayload(BaseModel):
    subject_id: Optional[str] = None
    title: Optional[str] = None
    test_type: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    description: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    weight: Optional[float] = None
    semester: Optional[int] = None


class ConvertPayload(BaseModel):
    value: float


@lru_cache(maxsize=1)
def get_tracker() -> TrackerService:
    return TrackerService.from_settings()


def get_auth() -> AppwriteAuthService:
    try:
        return AppwriteAuthService.from_settings()
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def _required_uid(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    return x_user_id


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail={"errors": exc.errors})
    if isinstance(exc, UnknownCurriculumError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, TrackerServiceError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("Store failure: %s", exc)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


DOMAIN_ERRORS = (ValidationError, UnknownCurriculumError, InvalidTransitionError, TrackerServiceError, StoreError)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/auth/signup")
def sign_up(payload: SignUpPayload, auth: AppwriteAuthService = Depends(get_auth)) -> Dict:
    try:
        result = auth.sign_up(payload.email, payload.password, payload.username)
        return {
            "uid": result.uid,
            "email": result.email,
            "id_token": result.id_token,
            "refresh_token": result.refresh_token,
        }
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.post("/auth/login")
def login(payload: AuthPayload, auth: AppwriteAuthService = Depends(get_auth)) -> Dict:
    try:
        result = auth.sign_in(payload.email, payload.password)
        return {
            "uid": result.uid,
            "email": result.email,
            "id_token": result.id_token,
            "refresh_token": result.refresh_token,
        }
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


@app.post("/auth/logout")
def logout(
    x_session_secret: Optional[str] = Header(default=None),
    auth: AppwriteAuthService = Depends(get_auth),
) -> Dict[str, str]:
    if not x_session_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-session-secret header")
    try:
        auth.sign_out(x_session_secret)
        return {"status": "signed_out"}
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@app.get("/curricula")
def curricula() -> List[Dict[str, str]]:
    return list_curricula()


@app.get("/settings")
def get_settings(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        saved = tracker.get_settings(uid)
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc
    if saved is None:
        return {"configured": False}
    return {"configured": True, "bm_type": saved.bm_type.value, "study_mode": saved.study_mode.value}


@app.put("/settings")
def save_settings(
    payload: SettingsPayload,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        saved = tracker.save_settings(uid, payload.bm_type, payload.study_mode)
        return {"configured": True, "bm_type": saved.bm_type.value, "study_mode": saved.study_mode.value}
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/subjects")
def list_subjects(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> List[Dict]:
    uid = _required_uid(x_user_id)
    try:
        curriculum = tracker.load_curriculum(uid)
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc
    if curriculum is None:
        return []
    return [describe_subject(subject) for subject in curriculum.subjects]


@app.get("/subjects/{subject_id}")
def get_subject(
    subject_id: str,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return tracker.subject_detail(uid, subject_id)
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/grades")
def list_grades(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> List[Dict]:
    uid = _required_uid(x_user_id)
    try:
        return [grade_to_json(g) for g in tracker.list_grades(uid)]
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.post("/grades", status_code=status.HTTP_201_CREATED)
def add_grade(
    payload: GradePayload,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return grade_to_json(tracker.add_grade(uid, payload.model_dump()))
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.delete("/grades/{grade_id}")
def delete_grade(
    grade_id: str,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        tracker.delete_grade(uid, grade_id)
        return {"status": "deleted"}
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/summary")
def summary(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return tracker.summary(uid)
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/passing")
def passing(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return tracker.passing_requirements(uid).to_dict()
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/tests")
def list_tests(
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> List[Dict]:
    uid = _required_uid(x_user_id)
    try:
        return [scheduled_test_to_json(t) for t in tracker.list_tests(uid)]
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.get("/tests/upcoming")
def upcoming(
    days: int = 7,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> List[Dict]:
    uid = _required_uid(x_user_id)
    try:
        return [scheduled_test_to_json(t) for t in tracker.upcoming_tests(uid, days=days)]
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.post("/tests", status_code=status.HTTP_201_CREATED)
def add_test(
    payload: ScheduledTestPayload,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return scheduled_test_to_json(tracker.add_test(uid, payload.model_dump()))
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.patch("/tests/{test_id}")
def update_test(
    test_id: str,
    payload: ScheduledTestUpdatePayload,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return scheduled_test_to_json(tracker.update_test(uid, test_id, payload.model_dump(exclude_unset=True)))
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.post("/tests/{test_id}/cancel")
def cancel_test(
    test_id: str,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        return scheduled_test_to_json(tracker.cancel_test(uid, test_id))
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.post("/tests/{test_id}/convert")
def convert_test(
    test_id: str,
    payload: ConvertPayload,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict:
    uid = _required_uid(x_user_id)
    try:
        result = tracker.convert_test_to_grade(uid, test_id, payload.value)
        return {"grade": grade_to_json(result["grade"]), "test": scheduled_test_to_json(result["test"])}
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc


@app.delete("/tests/{test_id}")
def delete_test(
    test_id: str,
    x_user_id: Optional[str] = Header(default=None),
    tracker: TrackerService = Depends(get_tracker),
) -> Dict[str, str]:
    uid = _required_uid(x_user_id)
    try:
        tracker.delete_test(uid, test_id)
        return {"status": "deleted"}
    except DOMAIN_ERRORS as exc:
        raise _translate(exc) from exc

