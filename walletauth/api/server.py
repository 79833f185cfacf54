"""
HTTP API for wallet sign-in and session management.

Endpoints are plain `def` handlers: the GitHub exchange does blocking I/O and
FastAPI runs sync handlers in its threadpool.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from walletauth.auth.config import AuthConfig, load_auth_config
from walletauth.auth.errors import AuthenticationFailure, AuthError, OAuthExchangeFailure
from walletauth.auth.github import IdentityExchanger, GitHubOAuthExchanger, build_github_authorize_url
from walletauth.auth.lifecycle import SessionLifecycleManager
from walletauth.auth.models import Session
from walletauth.auth.rate_limit import get_rate_limiter
from walletauth.auth.session import SessionStore
from walletauth.auth.util import constant_time_equals, random_token, sanitize_next_path

logger = logging.getLogger(__name__)

app = FastAPI(title="walletauth")

_OAUTH_COOKIE_PATH = "/api/auth/github"
_OAUTH_TTL_SECONDS = 10 * 60
_OAUTH_STATE_COOKIE = "walletauth_gh_state"
_OAUTH_NEXT_COOKIE = "walletauth_gh_next"


class VerifyRequest(BaseModel):
    message: str
    signature: str


class LinkRequest(BaseModel):
    code: str


def _oauth_cookie_kwargs(cfg: AuthConfig, *, key: str, value: str, max_age: int) -> dict:
    return {
        "key": key,
        "value": value,
        "max_age": max_age,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": _OAUTH_COOKIE_PATH,
    }


def _oauth_cookie_clear_kwargs(cfg: AuthConfig, *, key: str) -> dict:
    return _oauth_cookie_kwargs(cfg, key=key, value="", max_age=0)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _get_identity_exchanger(cfg: AuthConfig) -> IdentityExchanger:
    return GitHubOAuthExchanger(cfg)


def _lifecycle(cfg: AuthConfig) -> SessionLifecycleManager:
    return SessionLifecycleManager(cfg, exchanger=_get_identity_exchanger(cfg))


def _require_github(cfg: AuthConfig) -> None:
    if not cfg.github_enabled:
        raise HTTPException(status_code=403, detail="GitHub linking is not enabled")


def _auth_error_response(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500 and not isinstance(exc, OAuthExchangeFailure):
        # Generic body: storage/randomness faults are not the caller's business.
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.kind, exc.reason)
        content: Dict[str, Any] = {"detail": "Internal Server Error"}
    else:
        level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        logger.log(level, "%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.reason)
        content = {"error": exc.kind}
    return JSONResponse(status_code=exc.status_code, content=content, headers={"Cache-Control": "no-store"})


def _clear_oauth_cookies(cfg: AuthConfig, resp: Response) -> None:
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=_OAUTH_STATE_COOKIE))
    resp.set_cookie(**_oauth_cookie_clear_kwargs(cfg, key=_OAUTH_NEXT_COOKIE))


@app.exception_handler(AuthError)
async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return _auth_error_response(request, exc)


@app.on_event("startup")
def _startup_log_auth_config() -> None:
    """Log the effective auth configuration (never the secrets themselves)."""
    cfg = load_auth_config()
    if not cfg.session_secret:
        logger.warning("AUTH_SESSION_SECRET is not set: session endpoints will fail with 500")
    elif len(cfg.session_secret) < 32:
        logger.warning("AUTH_SESSION_SECRET is shorter than 32 characters")
    logger.info(
        "Auth config: siwe_domain=%s challenge_ttl=%ds session_ttl=%ds cookie_secure=%s github_enabled=%s",
        cfg.siwe_domain or "(any)",
        cfg.challenge_ttl_seconds,
        cfg.session_ttl_seconds,
        cfg.cookie_secure,
        cfg.github_enabled,
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.get("/api/auth/nonce")
def auth_nonce(request: Request, response: Response) -> Dict[str, Any]:
    """Issue a fresh single-use challenge bound to the caller's session."""
    cfg = load_auth_config()
    with SessionStore(cfg).scope(request, response) as scope:
        nonce = _lifecycle(cfg).issue(scope.session)
    return {"nonce": nonce}


@app.post("/api/auth/verify")
def auth_verify(body: VerifyRequest, request: Request, response: Response) -> Dict[str, Any]:
    """
    Verify a signed SIWE message. Failures return 401 with only the failure kind;
    the session transition for that kind is still persisted.
    """
    cfg = load_auth_config()
    limiter = get_rate_limiter(cfg.verify_max_attempts, cfg.verify_window_seconds)
    client = _client_ip(request)
    allowed, _ = limiter.check(client)
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many failed verification attempts. Please try again later.")

    with SessionStore(cfg).scope(request, response) as scope:
        try:
            identity = _lifecycle(cfg).verify(scope.session, body.message, body.signature)
        except AuthenticationFailure as e:
            limiter.record_failure(client)
            response.status_code = e.status_code
            return {"authenticated": False, "error": e.kind}

    limiter.reset(client)
    return {"address": identity.address, "authenticated": True}


@app.get("/api/auth/session")
def auth_session(request: Request, response: Response) -> Dict[str, Any]:
    """Who is the caller. Never errors: no/invalid session reads as unauthenticated."""
    cfg = load_auth_config()
    store = SessionStore(cfg)
    if not store.configured:
        return {"authenticated": False}
    with store.scope(request, response) as scope:
        identity = SessionLifecycleManager.current_identity(scope.session)
    return identity.to_dict()


@app.post("/api/auth/logout")
def auth_logout(request: Request, response: Response) -> Dict[str, Any]:
    cfg = load_auth_config()
    with SessionStore(cfg).scope(request, response) as scope:
        _lifecycle(cfg).logout(scope)
    return {"success": True}


@app.get("/api/auth/github/login")
def auth_github_login(request: Request, next_path: str = Query("/", alias="next")):
    """Start the GitHub OAuth flow for an already wallet-authenticated session."""
    cfg = load_auth_config()
    _require_github(cfg)

    store = SessionStore(cfg)
    session = store.read(request) if store.configured else None
    _lifecycle(cfg).require_linkable(session or Session())

    state = random_token(32)
    url = build_github_authorize_url(cfg, state=state)

    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**_oauth_cookie_kwargs(cfg, key=_OAUTH_STATE_COOKIE, value=state, max_age=_OAUTH_TTL_SECONDS))
    resp.set_cookie(
        **_oauth_cookie_kwargs(
            cfg, key=_OAUTH_NEXT_COOKIE, value=sanitize_next_path(next_path), max_age=_OAUTH_TTL_SECONDS
        )
    )
    return resp


@app.get("/api/auth/github/callback")
def auth_github_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
):
    """
    Handle the GitHub redirect: check state, exchange the code, link the identity.

    A denied authorization (`?error=access_denied`) or a failed link answers with
    the error kind; the one-shot OAuth cookies are cleared either way.
    """
    cfg = load_auth_config()
    _require_github(cfg)

    cookie_state = (request.cookies.get(_OAUTH_STATE_COOKIE) or "").strip()
    if not constant_time_equals(cookie_state, (state or "").strip()):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")
    cookie_next = sanitize_next_path(request.cookies.get(_OAUTH_NEXT_COOKIE))

    resp = RedirectResponse(url=cookie_next, status_code=302)
    try:
        if not code:
            raise OAuthExchangeFailure(f"authorization not granted ({(error or 'no code')[:64]!r})", status_code=401)
        with SessionStore(cfg).scope(request, resp) as scope:
            _lifecycle(cfg).link(scope.session, code)
    except AuthError as e:
        failed = _auth_error_response(request, e)
        _clear_oauth_cookies(cfg, failed)
        return failed

    _clear_oauth_cookies(cfg, resp)
    return resp


@app.post("/api/auth/github/link")
def auth_github_link(body: LinkRequest, request: Request, response: Response) -> Dict[str, Any]:
    """Link a GitHub identity from a code obtained by the client (SPA flow)."""
    cfg = load_auth_config()
    _require_github(cfg)
    with SessionStore(cfg).scope(request, response) as scope:
        identity = _lifecycle(cfg).link(scope.session, body.code)
    return identity.to_dict()


@app.post("/api/auth/github/unlink")
def auth_github_unlink(request: Request, response: Response) -> Dict[str, Any]:
    cfg = load_auth_config()
    with SessionStore(cfg).scope(request, response) as scope:
        identity = _lifecycle(cfg).unlink(scope.session)
    return identity.to_dict()


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting walletauth server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
