"""
Wallet authentication core.

Design goals:
- Sign-In with Ethereum (EIP-4361) challenge/response, single-use nonces.
- Nonce lives inside the session; no global nonce table to clean up.
- Cookie-based session (HttpOnly, signed) for same-origin UI.
- Provider-agnostic identity linking (GitHub now).
"""
