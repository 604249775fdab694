from __future__ import annotations

import json
import logging
import re
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, TypeVar

from ..models.session import Message, MessageRole, Session, UserType, utcnow
from .errors import NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
DEFAULT_MAX_AGE_HOURS = 24.0

T = TypeVar("T")


class SessionBackend(Protocol):
    """Durable key-value storage for serialized sessions."""

    def get(self, session_id: str) -> Optional[Dict[str, Any]]: ...

    def set(self, session_id: str, payload: Dict[str, Any]) -> None: ...

    def delete(self, session_id: str) -> None: ...


class JsonFileSessionBackend:
    """One JSON document per session inside ``directory``."""

    _SAFE_ID = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        if not self._SAFE_ID.match(session_id):
            raise ValueError(f"Invalid session id for file storage: {session_id!r}")
        return self._directory / f"{session_id}.json"

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(session_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as fp:
            return json.load(fp)

    def set(self, session_id: str, payload: Dict[str, Any]) -> None:
        path = self._path(session_id)
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fp:
            json.dump(payload, fp, ensure_ascii=False)
        tmp_path.replace(path)

    def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)


class SessionStore:
    """Session table with an in-memory fast path and optional write-through backend.

    The in-memory copy is authoritative. Backend reads happen on cache miss,
    backend writes after every mutation; backend failures are logged and
    ignored. Mutations of one session are serialized by a per-session lock;
    the table lock only guards the dictionaries themselves.
    """

    def __init__(
        self,
        backend: SessionBackend | None = None,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._history_limit = history_limit
        self._max_age = timedelta(hours=max_age_hours)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._session_locks: Dict[str, Lock] = {}
        self._table_lock = Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def get_or_create(
        self,
        *,
        session_id: str | None = None,
        identity_credential: str | None = None,
        cart_reference: str | None = None,
    ) -> Session:
        """Resolve ``session_id`` or start a new session.

        An existing session is upgraded to authenticated the first time a
        credential shows up; it never goes back to guest.
        """

        if session_id:
            with self._locked(session_id):
                session = self._load(session_id)
                if session is not None:
                    changed = False
                    if identity_credential and not session.identity_credential:
                        session.identity_credential = identity_credential
                        session.user_type = UserType.AUTHENTICATED
                        changed = True
                        logger.info("Session upgraded to authenticated session_id=%s", session_id)
                    if cart_reference and cart_reference != session.cart_reference:
                        session.cart_reference = cart_reference
                        changed = True
                    if changed:
                        self._save(session)
                    return self._snapshot(session)
            logger.info("Session %s did not resolve; creating a new one", session_id)

        now = self._clock()
        session = Session(
            user_type=UserType.AUTHENTICATED if identity_credential else UserType.GUEST,
            identity_credential=identity_credential or None,
            cart_reference=cart_reference or None,
            created_at=now,
            last_activity=now,
        )
        with self._table_lock:
            self._sessions[session.session_id] = session
            self._session_locks.setdefault(session.session_id, Lock())
        self._write_through(session)
        logger.info("Created new session session_id=%s user_type=%s", session.session_id, session.user_type.value)
        return self._snapshot(session)

    def get(self, session_id: str) -> Session | None:
        with self._locked(session_id):
            session = self._load(session_id)
            return self._snapshot(session) if session else None

    def append(
        self,
        session_id: str,
        role: MessageRole | str,
        content: str,
        metadata: Dict[str, Any] | None = None,
    ) -> Message:
        metadata = metadata or {}
        message = Message(
            role=MessageRole(role),
            content=content,
            timestamp=self._clock(),
            tools_used=list(metadata["tools_used"]) if metadata.get("tools_used") is not None else None,
            intent=metadata.get("intent"),
        )

        def _append(session: Session) -> Message:
            session.history.append(message)
            overflow = len(session.history) - self._history_limit
            if overflow > 0:
                del session.history[:overflow]
            return message

        return self._mutate(session_id, _append)

    def get_recent_history(self, session_id: str, limit: int = 10) -> List[Message]:
        if not session_id or limit <= 0:
            return []
        with self._locked(session_id):
            session = self._load(session_id)
            if session is None:
                return []
            return list(session.history[-limit:])

    def set_cart_reference(self, session_id: str, cart_reference: str | None) -> None:
        def _set(session: Session) -> None:
            session.cart_reference = cart_reference

        self._mutate(session_id, _set)
        logger.info("Updated cart reference session_id=%s", session_id)

    def clear_history(self, session_id: str) -> None:
        def _clear(session: Session) -> None:
            session.history.clear()

        self._mutate(session_id, _clear)
        logger.info("History cleared session_id=%s", session_id)

    def delete(self, session_id: str) -> bool:
        with self._table_lock:
            removed = self._sessions.pop(session_id, None) is not None
            self._session_locks.pop(session_id, None)
        self._delete_from_backend(session_id)
        logger.info("Deleted session session_id=%s", session_id)
        return removed

    def evict_stale(self, max_age_hours: float | None = None) -> int:
        """Delete cached sessions idle for longer than ``max_age_hours``."""

        max_age = timedelta(hours=max_age_hours) if max_age_hours is not None else self._max_age
        cutoff = self._clock() - max_age
        with self._table_lock:
            stale = [sid for sid, session in self._sessions.items() if session.last_activity < cutoff]
        for session_id in stale:
            self.delete(session_id)
        with self._table_lock:
            orphaned = [
                sid for sid, lock in self._session_locks.items() if sid not in self._sessions and not lock.locked()
            ]
            for session_id in orphaned:
                del self._session_locks[session_id]
        logger.info("Cleaned up %d old sessions", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._sessions)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _lock_for(self, session_id: str) -> Lock:
        with self._table_lock:
            return self._session_locks.setdefault(session_id, Lock())

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[None]:
        """Hold the session lock; drop it afterwards if the id did not resolve to a session."""

        lock = self._lock_for(session_id)
        try:
            with lock:
                yield
        finally:
            with self._table_lock:
                if session_id not in self._sessions and not lock.locked():
                    if self._session_locks.get(session_id) is lock:
                        del self._session_locks[session_id]

    def _mutate(self, session_id: str, fn: Callable[[Session], T]) -> T:
        with self._locked(session_id):
            session = self._load(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}", reason="session_not_found")
            result = fn(session)
            self._save(session)
            return result

    def _load(self, session_id: str) -> Session | None:
        with self._table_lock:
            session = self._sessions.get(session_id)
        if session is None:
            session = self._read_through(session_id)
        if session is None:
            return None
        if self._is_expired(session):
            logger.info("Session %s expired", session_id)
            with self._table_lock:
                self._sessions.pop(session_id, None)
            self._delete_from_backend(session_id)
            return None
        return session

    def _delete_from_backend(self, session_id: str) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete(session_id)
        except Exception as exc:
            logger.warning("Failed to delete session %s from storage: %s", session_id, exc)

    def _read_through(self, session_id: str) -> Session | None:
        if self._backend is None:
            return None
        try:
            payload = self._backend.get(session_id)
            if not payload:
                return None
            session = Session.model_validate(payload)
        except Exception as exc:
            logger.warning("Failed to load session %s from storage: %s", session_id, exc)
            return None
        with self._table_lock:
            self._sessions[session_id] = session
        return session

    def _save(self, session: Session) -> None:
        session.last_activity = self._clock()
        self._write_through(session)

    def _write_through(self, session: Session) -> None:
        if self._backend is None:
            return
        try:
            self._backend.set(session.session_id, session.model_dump(mode="json"))
        except Exception as exc:
            logger.warning("Failed to save session %s to storage: %s", session.session_id, exc)

    def _is_expired(self, session: Session) -> bool:
        return session.last_activity < self._clock() - self._max_age

    @staticmethod
    def _snapshot(session: Session) -> Session:
        return session.model_copy(update={"history": list(session.history)})
