#!/usr/bin/env python3
"""
walletauth - Sign-In with Ethereum sessions with optional GitHub linking.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep walletauth imports lazy (inside functions) so `--help` works without
# the crypto/web dependencies installed.
#


def print_challenge(
    address: str,
    nonce: str,
    *,
    chain_id: int,
    domain: str,
    uri: str,
    statement: str | None,
    ttl_minutes: int,
) -> None:
    """Print a canonical EIP-4361 challenge for manual signing (dev helper)."""
    from walletauth.auth.message import build_challenge

    now = datetime.now(timezone.utc)
    msg = build_challenge(
        domain=domain,
        address=address,
        uri=uri,
        chain_id=chain_id,
        nonce=nonce,
        issued_at=now,
        statement=statement,
        expiration_time=now + timedelta(minutes=ttl_minutes) if ttl_minutes > 0 else None,
    )
    print(msg.prepare())


def inspect_session(value: str) -> int:
    """Decode a session cookie with the configured secret. The nonce is redacted."""
    from walletauth.auth.config import load_auth_config
    from walletauth.auth.errors import StorageFailure, StorageIntegrityFailure
    from walletauth.auth.session import SessionStore

    store = SessionStore(load_auth_config())
    try:
        session = store.decode(value.strip())
    except StorageFailure as e:
        print(f"error: {e.reason}", file=sys.stderr)
        return 2
    except StorageIntegrityFailure as e:
        print(json.dumps({"valid": False, "reason": e.reason}))
        return 1
    if session is None:
        print(json.dumps({"valid": False, "reason": "expired"}))
        return 1

    payload = session.to_payload()
    if payload.get("nonce"):
        payload["nonce"] = "[REDACTED]"
    print(json.dumps({"valid": True, "state": session.state.value, "session": payload}, indent=2))
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Wallet sign-in (SIWE) session service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP API
  python main.py --serve --port 8080

  # Print a challenge to sign with a wallet
  python main.py --print-message --address 0xAbC... --nonce 3f9a... --domain localhost:3000

  # Decode a session cookie (uses AUTH_SESSION_SECRET)
  python main.py --inspect-session 'eyJ2Ijox...'
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")

    parser.add_argument(
        "--print-message", action="store_true", help="Print an EIP-4361 challenge message (needs --address, --nonce)"
    )
    parser.add_argument("--address", help="Wallet address for --print-message")
    parser.add_argument("--nonce", help="Nonce from GET /api/auth/nonce for --print-message")
    parser.add_argument("--chain-id", type=int, default=1, help="Chain ID for --print-message (default: 1)")
    parser.add_argument("--domain", default="localhost:8080", help="Domain for --print-message (default: localhost:8080)")
    parser.add_argument("--uri", help="URI for --print-message (default: http://<domain>)")
    parser.add_argument("--statement", default="Sign in with Ethereum.", help="Statement line for --print-message")
    parser.add_argument(
        "--ttl-minutes", type=int, default=10, help="Expiration Time offset for --print-message (0 omits it)"
    )

    parser.add_argument("--inspect-session", metavar="VALUE", help="Decode a session cookie value")

    args = parser.parse_args()

    try:
        if args.serve:
            from walletauth.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        if args.print_message:
            if not args.address or not args.nonce:
                parser.error("--print-message requires --address and --nonce")
            print_challenge(
                args.address,
                args.nonce,
                chain_id=args.chain_id,
                domain=args.domain,
                uri=args.uri or f"http://{args.domain}",
                statement=args.statement or None,
                ttl_minutes=args.ttl_minutes,
            )
            return

        if args.inspect_session:
            sys.exit(inspect_session(args.inspect_session))

        # No arguments provided
        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
