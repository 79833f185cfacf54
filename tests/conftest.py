"""
Pytest config.

Pins the repo root on sys.path so `import walletauth` works even when a global
`pytest` entrypoint is used without an editable install, and provides shared
fixtures: a deterministic clock, an explicit AuthConfig factory, and a real
secp256k1 wallet for signing challenges.
"""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from eth_account import Account  # noqa: E402
from eth_account.messages import encode_defunct  # noqa: E402

from walletauth.auth.config import AuthConfig, load_auth_config  # noqa: E402
from walletauth.auth.rate_limit import reset_rate_limiter  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-purposes-only"
TEST_DOMAIN = "localhost:3000"
# Throwaway keys; never fund these.
WALLET_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_WALLET_KEY = "0x" + "11" * 32


class FixedClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def sign_text(account, text: str) -> str:
    signed = account.sign_message(encode_defunct(text=text))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture(autouse=True)
def _isolate_global_auth_state():
    """Config cache and the verify rate limiter are process-global; reset around every test."""
    load_auth_config.cache_clear()
    reset_rate_limiter()
    yield
    load_auth_config.cache_clear()
    reset_rate_limiter()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_cfg():
    base = AuthConfig(
        public_base_url=f"http://{TEST_DOMAIN}",
        session_secret=TEST_SECRET,
        session_ttl_seconds=3600,
        cookie_secure=False,
        challenge_ttl_seconds=600,
        clock_skew_seconds=60,
        siwe_domain=TEST_DOMAIN,
        verify_max_attempts=10,
        verify_window_seconds=300,
        github_client_id="gh-client-id",
        github_client_secret="gh-client-secret",
        github_oauth_base_url="https://github.com",
        github_api_base_url="https://api.github.com",
    )

    def _make(**overrides) -> AuthConfig:
        return replace(base, **overrides)

    return _make


@pytest.fixture
def cfg(make_cfg) -> AuthConfig:
    return make_cfg()


@pytest.fixture
def wallet():
    return Account.from_key(WALLET_KEY)


@pytest.fixture
def other_wallet():
    return Account.from_key(OTHER_WALLET_KEY)


@pytest.fixture
def auth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment for HTTP tests (loaded through load_auth_config)."""
    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SECRET)
    monkeypatch.setenv("AUTH_PUBLIC_BASE_URL", f"http://{TEST_DOMAIN}")
    monkeypatch.setenv("GITHUB_CLIENT_ID", "gh-client-id")
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", "gh-client-secret")
    for name in (
        "AUTH_COOKIE_SECURE",
        "SIWE_DOMAIN",
        "AUTH_SESSION_TTL_SECONDS",
        "AUTH_CHALLENGE_TTL_SECONDS",
        "AUTH_CLOCK_SKEW_SECONDS",
        "AUTH_VERIFY_MAX_ATTEMPTS",
        "AUTH_VERIFY_WINDOW_SECONDS",
        "GITHUB_OAUTH_BASE_URL",
        "GITHUB_API_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()


@pytest.fixture
def sign():
    return sign_text


@pytest.fixture
def make_message(clock: FixedClock):
    """Build canonical challenge text; `issued_at` defaults to the fixed test clock."""
    from walletauth.auth.message import build_challenge

    def _make(address: str, nonce: str, *, issued_at=None, chain_id: int = 1, domain: str = TEST_DOMAIN, **kw) -> str:
        return build_challenge(
            domain=domain,
            address=address,
            uri=f"http://{domain}",
            chain_id=chain_id,
            nonce=nonce,
            issued_at=issued_at or clock(),
            statement="Sign in with Ethereum.",
            **kw,
        ).prepare()

    return _make
