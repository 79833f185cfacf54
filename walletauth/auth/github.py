"""
GitHub account linking via the OAuth web application flow.

Only the client side of the flow lives here: build the authorize URL, exchange the
returned code for an access token, and fetch the minimal identity (id, login).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import urlencode

import requests

from walletauth.auth.config import AuthConfig
from walletauth.auth.errors import OAuthExchangeFailure
from walletauth.auth.models import ExternalIdentity

logger = logging.getLogger(__name__)

GITHUB_CALLBACK_PATH = "/api/auth/github/callback"
_TIMEOUT_SECONDS = 10


class IdentityExchanger(Protocol):
    """Capability: turn an OAuth authorization code into an external identity."""

    provider: str

    def exchange_code(self, code: str) -> ExternalIdentity:
        """
        Exchange `code` with the provider and return the caller's identity.

        Raises:
            OAuthExchangeFailure on network errors, non-success responses, or
            malformed payloads.
        """
        ...


def github_redirect_uri(cfg: AuthConfig) -> Optional[str]:
    base = (cfg.public_base_url or "").strip().rstrip("/")
    if not base:
        return None
    return f"{base}{GITHUB_CALLBACK_PATH}"


def build_github_authorize_url(cfg: AuthConfig, *, state: str, redirect_uri: Optional[str] = None) -> str:
    """
    Build the GitHub authorization URL. No scopes are requested: public profile
    data (id, login) is all the link needs.
    """
    if not cfg.github_client_id:
        raise ValueError("GitHub client ID not configured")

    params = {
        "client_id": cfg.github_client_id,
        "state": state,
        "allow_signup": "false",
    }
    redirect_uri = redirect_uri or github_redirect_uri(cfg)
    if redirect_uri:
        params["redirect_uri"] = redirect_uri
    return f"{cfg.github_oauth_base_url}/login/oauth/authorize?{urlencode(params)}"


class GitHubOAuthExchanger:
    """GitHub implementation of IdentityExchanger."""

    provider = "github"

    def __init__(self, cfg: AuthConfig) -> None:
        self._cfg = cfg

    def _exchange_token(self, code: str) -> str:
        if not self._cfg.github_client_id or not self._cfg.github_client_secret:
            raise OAuthExchangeFailure("GitHub client ID/secret not configured")

        payload = {
            "client_id": self._cfg.github_client_id,
            "client_secret": self._cfg.github_client_secret,
            "code": code,
        }
        redirect_uri = github_redirect_uri(self._cfg)
        if redirect_uri:
            payload["redirect_uri"] = redirect_uri

        url = f"{self._cfg.github_oauth_base_url}/login/oauth/access_token"
        try:
            r = requests.post(url, data=payload, headers={"Accept": "application/json"}, timeout=_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise OAuthExchangeFailure(f"token request failed: {type(e).__name__}") from e
        if r.status_code >= 400:
            # Avoid leaking sensitive info; include minimal context.
            raise OAuthExchangeFailure(f"token exchange failed (status={r.status_code})")

        data = _json_dict(r, "token response")
        # GitHub reports a rejected code as HTTP 200 with an `error` field.
        error = str(data.get("error") or "").strip()
        if error:
            status = 401 if error in ("bad_verification_code", "incorrect_client_credentials") else 502
            raise OAuthExchangeFailure(f"token exchange rejected ({error})", status_code=status)

        token = str(data.get("access_token") or "").strip()
        if not token:
            raise OAuthExchangeFailure("token response missing access_token")
        return token

    def _fetch_identity(self, token: str) -> ExternalIdentity:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        try:
            r = requests.get(f"{self._cfg.github_api_base_url}/user", headers=headers, timeout=_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            raise OAuthExchangeFailure(f"user request failed: {type(e).__name__}") from e
        if r.status_code >= 400:
            raise OAuthExchangeFailure(f"user lookup failed (status={r.status_code})")

        data = _json_dict(r, "user response")
        user_id = data.get("id")
        login = str(data.get("login") or "").strip()
        if user_id in (None, "") or isinstance(user_id, bool) or not login:
            raise OAuthExchangeFailure("user response missing id/login")
        return ExternalIdentity(provider=self.provider, id=str(user_id), login=login)

    def exchange_code(self, code: str) -> ExternalIdentity:
        code = (code or "").strip()
        if not code:
            raise OAuthExchangeFailure("missing authorization code", status_code=401)
        identity = self._fetch_identity(self._exchange_token(code))
        logger.info("GitHub identity resolved: login=%s id=%s", identity.login, identity.id)
        return identity


def _json_dict(r: requests.Response, what: str) -> Dict[str, Any]:
    try:
        data = r.json()
    except ValueError as e:
        raise OAuthExchangeFailure(f"invalid {what} (not JSON)") from e
    if not isinstance(data, dict):
        raise OAuthExchangeFailure(f"invalid {what}")
    return data
