from __future__ import annotations

import json

import main
from walletauth.auth.message import parse_message
from walletauth.auth.models import Session
from walletauth.auth.session import SessionStore


def test_print_challenge_outputs_parseable_message(capsys) -> None:
    main.print_challenge(
        "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "0123456789abcdef0123456789abcdef",
        chain_id=10,
        domain="localhost:3000",
        uri="http://localhost:3000",
        statement=None,
        ttl_minutes=5,
    )
    msg = parse_message(capsys.readouterr().out.rstrip("\n"))

    assert msg.domain == "localhost:3000"
    assert msg.chain_id == 10
    assert msg.nonce == "0123456789abcdef0123456789abcdef"
    assert msg.statement is None
    assert msg.expiration_time is not None


def test_inspect_session_redacts_nonce(auth_env, capsys) -> None:
    from walletauth.auth.config import load_auth_config

    session = Session()
    session.issue_challenge("0123456789abcdef0123456789abcdef", 1.0)
    value = SessionStore(load_auth_config()).dump(session)

    assert main.inspect_session(value) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["valid"] is True
    assert out["state"] == "challenge_issued"
    assert out["session"]["nonce"] == "[REDACTED]"


def test_inspect_session_reports_tampering(auth_env, capsys) -> None:
    assert main.inspect_session("not-a-session") == 1
    assert json.loads(capsys.readouterr().out)["valid"] is False


def test_inspect_session_without_secret(monkeypatch, auth_env, capsys) -> None:
    from walletauth.auth.config import load_auth_config

    monkeypatch.delenv("AUTH_SESSION_SECRET", raising=False)
    load_auth_config.cache_clear()
    assert main.inspect_session("anything") == 2
