from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from fastapi import Request, Response
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from walletauth.auth.config import AuthConfig
from walletauth.auth.errors import StorageFailure, StorageIntegrityFailure
from walletauth.auth.models import Session

logger = logging.getLogger(__name__)

SESSION_SALT = "walletauth-session-v1"


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-walletauth_session" if cfg.cookie_secure else "walletauth_session"


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


@dataclass
class SessionScope:
    session: Session
    terminated: bool = False

    def terminate(self) -> None:
        self.terminated = True


class SessionStore:
    """
    Signed, TTL-bounded session container held by the client as a cookie.

    The signature makes the cookie tamper-evident; `max_age` on load enforces the
    session TTL. Anything that fails either check reads as "no session".
    """

    def __init__(self, cfg: AuthConfig) -> None:
        self._cfg = cfg
        self._serializer = _serializer(cfg)

    @property
    def configured(self) -> bool:
        return self._serializer is not None

    def _require_serializer(self) -> URLSafeTimedSerializer:
        if self._serializer is None:
            raise StorageFailure("session signing is not configured (AUTH_SESSION_SECRET)")
        return self._serializer

    def dump(self, session: Session) -> str:
        return self._require_serializer().dumps(session.to_payload())

    def decode(self, value: str) -> Optional[Session]:
        """
        Returns None for an expired container.

        Raises:
            StorageIntegrityFailure: bad signature or malformed payload.
        """
        s = self._require_serializer()
        try:
            data = s.loads(value, max_age=self._cfg.session_ttl_seconds)
        except SignatureExpired:
            return None
        except BadData as e:
            raise StorageIntegrityFailure(type(e).__name__) from e
        try:
            return Session.from_payload(data)
        except ValueError as e:
            raise StorageIntegrityFailure(str(e)) from e

    def load(self, value: str | None) -> Optional[Session]:
        if not value:
            return None
        try:
            session = self.decode(value)
        except StorageIntegrityFailure as e:
            logger.warning("Session integrity check failed (%s); treating as unauthenticated", e.reason)
            return None
        if session is None:
            logger.debug("Session container expired; treating as unauthenticated")
        return session

    def read(self, request: Request) -> Optional[Session]:
        if not self.configured:
            return None
        return self.load(request.cookies.get(session_cookie_name(self._cfg)))

    def persist(self, response: Response, scope: SessionScope) -> None:
        if scope.terminated:
            response.set_cookie(**clear_session_cookie_kwargs(self._cfg))
        elif scope.session.is_new or scope.session.modified:
            response.set_cookie(**session_cookie_kwargs(self._cfg, self.dump(scope.session)))
        response.headers["Cache-Control"] = "no-store"

    @contextmanager
    def scope(self, request: Request, response: Response) -> Iterator[SessionScope]:
        """
        Acquire the caller's session for the duration of one request.

        On normal exit the session is written to `response` (only if new or
        modified) or cleared if terminated. If the body raises, nothing is written.
        """
        self._require_serializer()
        session = self.read(request) or Session()
        scope = SessionScope(session=session)
        yield scope
        self.persist(response, scope)
