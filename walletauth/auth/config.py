from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse


@dataclass(frozen=True)
class AuthConfig:
    # Session configuration
    public_base_url: Optional[str]  # Required for the GitHub redirect URI
    session_secret: Optional[str]  # Required for session signing
    session_ttl_seconds: int
    cookie_secure: bool

    # Challenge (SIWE) configuration
    challenge_ttl_seconds: int
    clock_skew_seconds: int
    siwe_domain: Optional[str]  # Expected message domain (None disables the check)

    # Verify rate limiting (0 disables)
    verify_max_attempts: int
    verify_window_seconds: int

    # GitHub OAuth (optional)
    github_client_id: Optional[str]
    github_client_secret: Optional[str]
    github_oauth_base_url: str
    github_api_base_url: str

    @property
    def github_enabled(self) -> bool:
        """GitHub linking is enabled if the OAuth app credentials are configured."""
        return bool(self.github_client_id and self.github_client_secret)


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name, "") or "").strip()
    try:
        value = int(float(raw)) if raw else default
    except ValueError:
        value = default
    return value if value >= minimum else minimum


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    GitHub linking is enabled if GITHUB_CLIENT_ID and GITHUB_CLIENT_SECRET are set.
    The expected SIWE domain defaults to the host of AUTH_PUBLIC_BASE_URL; set
    SIWE_DOMAIN explicitly to override it (or to "-" to disable the check).
    """
    public_base_url = _env_str("AUTH_PUBLIC_BASE_URL")
    cookie_secure_env = (os.getenv("AUTH_COOKIE_SECURE", "") or "").strip().lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = True if (public_base_url or "").startswith("https://") else False

    siwe_domain = _env_str("SIWE_DOMAIN")
    if siwe_domain == "-":
        siwe_domain = None
    elif siwe_domain is None and public_base_url:
        siwe_domain = urlparse(public_base_url).netloc or None

    return AuthConfig(
        # Session configuration
        public_base_url=public_base_url,
        session_secret=_env_str("AUTH_SESSION_SECRET"),
        session_ttl_seconds=_env_int("AUTH_SESSION_TTL_SECONDS", 86400, minimum=60),  # 24h default
        cookie_secure=cookie_secure,
        # Challenge configuration
        challenge_ttl_seconds=_env_int("AUTH_CHALLENGE_TTL_SECONDS", 600, minimum=30),
        clock_skew_seconds=_env_int("AUTH_CLOCK_SKEW_SECONDS", 60),
        siwe_domain=siwe_domain,
        # Rate limiting
        verify_max_attempts=_env_int("AUTH_VERIFY_MAX_ATTEMPTS", 10),
        verify_window_seconds=_env_int("AUTH_VERIFY_WINDOW_SECONDS", 300, minimum=1),
        # GitHub OAuth
        github_client_id=_env_str("GITHUB_CLIENT_ID"),
        github_client_secret=_env_str("GITHUB_CLIENT_SECRET"),
        github_oauth_base_url=(_env_str("GITHUB_OAUTH_BASE_URL") or "https://github.com").rstrip("/"),
        github_api_base_url=(_env_str("GITHUB_API_BASE_URL") or "https://api.github.com").rstrip("/"),
    )
