from dataclasses import dataclass
from typing import Any, Dict, Optional
import requests
from requests import RequestException

from bmplannr.app_logger import get_logger
from bmplannr.config.settings import settings
from bmplannr.state.session_state import SessionState

logger = get_logger("auth")


class AuthServiceError(Exception):
    pass


@dataclass
class AuthResult:
    uid: str
    email: str
    id_token: str
    refresh_token: str


class AppwriteAuthService:
    SIGN_UP_PATH = "/account"
    LOGIN_PATH = "/account/sessions/email"
    LOGOUT_PATH = "/account/sessions/current"

    def __init__(self, endpoint: str, project_id: str, session: Optional[SessionState] = None) -> None:
        if not endpoint:
            raise AuthServiceError("Missing APPWRITE_ENDPOINT in environment")
        if not project_id:
            raise AuthServiceError("Missing APPWRITE_PROJECT_ID in environment")
        self.endpoint = endpoint.rstrip("/")
        self.project_id = project_id
        self.session = session

    @classmethod
    def from_settings(cls, session: Optional[SessionState] = None) -> "AppwriteAuthService":
        return cls(settings.appwrite_endpoint, settings.appwrite_project_id, session=session)

    def sign_up(self, email: str, password: str, username: Optional[str] = None) -> AuthResult:
        payload = {
            "userId": "unique()",
            "email": email,
            "password": password,
        }
        if username and username.strip():
            payload["name"] = username.strip()
        self._request("POST", self.SIGN_UP_PATH, payload)
        logger.info("Account created for %s", email)
        return self.sign_in(email, password)

    def sign_in(self, email: str, password: str) -> AuthResult:
        payload = {
            "email": email,
            "password": password,
        }
        response = self._request("POST", self.LOGIN_PATH, payload)
        result = self._to_result(response, email)
        if self.session is not None:
            self.session.sign_in(result.uid, result.email, result.id_token, result.refresh_token)
        return result

    def sign_out(self, session_secret: Optional[str] = None) -> None:
        secret = session_secret or (self.session.id_token if self.session else None)
        if not secret:
            raise AuthServiceError("NO_ACTIVE_SESSION")
        self._request("DELETE", self.LOGOUT_PATH, None, extra_headers={"X-Appwrite-Session": secret})
        if self.session is not None:
            self.session.clear()

    def current_user_id(self) -> Optional[str]:
        return self.session.current_user_id() if self.session else None

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.endpoint}{path}"
        headers = {
            "X-Appwrite-Project": self.project_id,
            "Content-Type": "application/json",
            **(extra_headers or {}),
        }
        try:
            res = requests.request(method, url, headers=headers, json=payload, timeout=15)
        except RequestException as exc:
            logger.warning("Auth request %s %s failed: %s", method, path, exc)
            raise AuthServiceError("AUTH_SERVICE_UNAVAILABLE") from exc

        if res.status_code == 204:
            return {}
        try:
            data = res.json()
        except ValueError:
            raise AuthServiceError("AUTH_SERVICE_UNAVAILABLE")

        if res.status_code >= 400:
            error_key = str(data.get("message") or data.get("type") or "AUTH_ERROR")
            raise AuthServiceError(error_key)

        return data

    @staticmethod
    def _to_result(data: Dict[str, Any], email: str) -> AuthResult:
        session_id = str(data.get("$id") or "")
        session_secret = str(data.get("secret") or "")
        uid = str(data.get("userId") or "")
        if not uid:
            raise AuthServiceError("INVALID_APPWRITE_SESSION")
        return AuthResult(
            uid=uid,
            email=email,
            id_token=session_secret,
            refresh_token=session_id,
        )
