from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from walletauth.auth.config import load_auth_config
from walletauth.auth.lifecycle import SessionLifecycleManager
from walletauth.auth.models import CurrentIdentity
from walletauth.auth.session import SessionStore


def authenticate_request(request: Request) -> Optional[CurrentIdentity]:
    """
    Resolve the caller from the session cookie.

    Returns None for anything short of a wallet-authenticated session (missing,
    expired, tampered, or still mid-challenge). Never raises.
    """
    cfg = load_auth_config()
    session = SessionStore(cfg).read(request)
    identity = SessionLifecycleManager.current_identity(session)
    return identity if identity.authenticated else None


def require_identity(request: Request) -> CurrentIdentity:
    """FastAPI dependency for collaborator routes that need a signed-in wallet."""
    identity = authenticate_request(request)
    if identity is None:
        # IMPORTANT: do not emit `WWW-Authenticate`; the UI owns the login prompt.
        raise HTTPException(status_code=401, detail="Unauthorized")
    return identity
