from dataclasses import dataclass, field
from typing import Callable, List, Optional


Listener = Callable[[Optional[str]], None]


@dataclass
class SessionState:
    uid: Optional[str] = None
    email: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    _listeners: List[Listener] = field(default_factory=list, repr=False)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.uid and self.id_token)

    def current_user_id(self) -> Optional[str]:
        return self.uid if self.is_authenticated else None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener with the new user id (or None) whenever the user changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, uid: str, email: str, id_token: str, refresh_token: str) -> None:
        changed = uid != self.uid
        self.uid = uid
        self.email = email
        self.id_token = id_token
        self.refresh_token = refresh_token
        if changed:
            self._notify()

    def clear(self) -> None:
        had_user = self.uid is not None
        self.uid = None
        self.email = None
        self.id_token = None
        self.refresh_token = None
        if had_user:
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.uid)
