from __future__ import annotations

import time
from unittest.mock import patch

import pytest
from fastapi import Response
from itsdangerous import URLSafeTimedSerializer
from starlette.requests import Request

from walletauth.auth.errors import StorageFailure, StorageIntegrityFailure
from walletauth.auth.models import ExternalIdentity, Session, SessionState
from walletauth.auth.session import SESSION_SALT, SessionStore, session_cookie_name


def _request(cookies: dict | None = None) -> Request:
    header = "; ".join(f"{k}={v}" for k, v in (cookies or {}).items())
    headers = [(b"cookie", header.encode("latin-1"))] if header else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


def _authenticated_session() -> Session:
    s = Session()
    s.authenticate("0xAbCdEf0000000000000000000000000000000001", 1)
    return s


def test_round_trip_preserves_fields(cfg) -> None:
    store = SessionStore(cfg)
    s = _authenticated_session()
    s.link(ExternalIdentity(provider="github", id="583231", login="octocat"))

    loaded = store.load(store.dump(s))

    assert loaded is not None
    assert loaded.address == "0xabcdef0000000000000000000000000000000001"
    assert loaded.authenticated is True
    assert loaded.chain_id == 1
    assert loaded.github == ExternalIdentity(provider="github", id="583231", login="octocat")
    assert loaded.state == SessionState.LINKED
    assert loaded.is_new is False
    assert loaded.modified is False


def test_pending_challenge_round_trip(cfg) -> None:
    store = SessionStore(cfg)
    s = Session()
    s.issue_challenge("0123456789abcdef0123456789abcdef", 1714564800.0)

    loaded = store.load(store.dump(s))

    assert loaded is not None
    assert loaded.state == SessionState.CHALLENGE_ISSUED
    assert loaded.nonce == "0123456789abcdef0123456789abcdef"
    assert loaded.issued_at == 1714564800.0


def test_tampering_with_any_byte_never_yields_a_forged_session(cfg) -> None:
    store = SessionStore(cfg)
    original = _authenticated_session()
    value = store.dump(original)

    rejected = 0
    for i in range(len(value)):
        replacement = "A" if value[i] != "A" else "B"
        forged = value[:i] + replacement + value[i + 1 :]
        loaded = store.load(forged)
        if loaded is None:
            rejected += 1
        else:
            # Only a flip in base64 padding bits can survive, and it decodes to the same bytes.
            assert loaded.to_payload() == original.to_payload(), f"tampered byte {i} produced a different session"
    assert rejected >= len(value) - 3


def test_forged_payload_with_wrong_secret_is_rejected(cfg) -> None:
    forged = URLSafeTimedSerializer("attacker-secret", salt=SESSION_SALT).dumps(
        {"v": 1, "address": "0xabc", "chainId": 1, "authenticated": True, "github": None, "nonce": None}
    )
    assert SessionStore(cfg).load(forged) is None


def test_swapped_payload_keeps_original_signature_invalid(cfg) -> None:
    store = SessionStore(cfg)
    value = store.dump(Session())
    forged_payload = URLSafeTimedSerializer("attacker-secret", salt=SESSION_SALT).dumps(
        {"v": 1, "address": "0x" + "ab" * 20, "chainId": 1, "authenticated": True, "github": None, "nonce": None}
    )
    _, ts, sig = value.rsplit(".", 2)
    payload = forged_payload.rsplit(".", 2)[0]

    assert store.load(f"{payload}.{ts}.{sig}") is None


def test_invariant_violation_is_an_integrity_failure(cfg) -> None:
    s = URLSafeTimedSerializer(cfg.session_secret, salt=SESSION_SALT)
    value = s.dumps({"v": 1, "address": "", "chainId": 1, "authenticated": True, "nonce": None, "github": None})
    store = SessionStore(cfg)

    with pytest.raises(StorageIntegrityFailure):
        store.decode(value)
    assert store.load(value) is None


def test_expired_container_reads_as_no_session(cfg) -> None:
    store = SessionStore(cfg)
    issued = int(time.time()) - cfg.session_ttl_seconds - 60
    with patch("itsdangerous.timed.TimestampSigner.get_timestamp", return_value=issued):
        value = store.dump(_authenticated_session())

    assert store.decode(value) is None
    assert store.load(value) is None


def test_missing_secret_is_a_storage_failure(make_cfg) -> None:
    store = SessionStore(make_cfg(session_secret=None))
    assert store.configured is False
    with pytest.raises(StorageFailure):
        store.dump(Session())
    with pytest.raises(StorageFailure):
        with store.scope(_request(), Response()):
            pass


def test_scope_persists_new_session_on_normal_exit(cfg) -> None:
    store = SessionStore(cfg)
    response = Response()

    with store.scope(_request(), response) as scope:
        assert scope.session.state == SessionState.UNAUTHENTICATED

    cookie = response.headers.get("set-cookie") or ""
    assert cookie.startswith(f"{session_cookie_name(cfg)}=")
    assert "httponly" in cookie.lower()
    assert response.headers.get("cache-control") == "no-store"


def test_scope_skips_write_for_unmodified_existing_session(cfg) -> None:
    store = SessionStore(cfg)
    value = store.dump(_authenticated_session())
    response = Response()

    with store.scope(_request({session_cookie_name(cfg): value}), response) as scope:
        assert scope.session.authenticated is True

    assert "set-cookie" not in response.headers


def test_scope_writes_nothing_when_body_raises(cfg) -> None:
    store = SessionStore(cfg)
    response = Response()

    with pytest.raises(RuntimeError):
        with store.scope(_request(), response) as scope:
            scope.session.issue_challenge("0123456789abcdef0123456789abcdef", 1.0)
            raise RuntimeError("boom")

    assert "set-cookie" not in response.headers


def test_scope_terminate_clears_cookie(cfg) -> None:
    store = SessionStore(cfg)
    value = store.dump(_authenticated_session())
    response = Response()

    with store.scope(_request({session_cookie_name(cfg): value}), response) as scope:
        scope.terminate()

    cookie = response.headers.get("set-cookie") or ""
    assert cookie.startswith(f'{session_cookie_name(cfg)}=""') or cookie.startswith(f"{session_cookie_name(cfg)}=;")
    assert "max-age=0" in cookie.lower()


def test_secure_cookie_uses_host_prefix(make_cfg) -> None:
    assert session_cookie_name(make_cfg(cookie_secure=True)) == "__Host-walletauth_session"
    assert session_cookie_name(make_cfg(cookie_secure=False)) == "walletauth_session"
