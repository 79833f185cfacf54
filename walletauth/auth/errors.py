"""
Error taxonomy for wallet authentication.

Every error carries a stable `kind` (the only detail surfaced to clients) and the
HTTP status the API maps it to. The message passed to the constructor is internal
context for logs and must never be echoed back in a response.
"""
from __future__ import annotations


class AuthError(Exception):
    kind = "AuthError"
    status_code = 500

    def __init__(self, reason: str = "", *, status_code: int | None = None) -> None:
        super().__init__(reason or self.kind)
        self.reason = reason
        if status_code is not None:
            self.status_code = status_code


class AuthenticationFailure(AuthError):
    """Cryptographic/protocol failure while verifying a signed challenge."""

    kind = "AuthenticationFailure"
    status_code = 401


class InvalidSignature(AuthenticationFailure):
    kind = "InvalidSignature"


class NonceMismatch(AuthenticationFailure):
    kind = "NonceMismatch"


class ChallengeExpired(AuthenticationFailure):
    kind = "ChallengeExpired"


class OAuthExchangeFailure(AuthError):
    """External code exchange failed (network, provider rejection, malformed payload)."""

    kind = "OAuthExchangeFailure"
    status_code = 502


class PreconditionFailed(AuthError):
    """Operation invoked from a session state that does not allow it."""

    kind = "PreconditionFailed"
    status_code = 412


class StorageIntegrityFailure(AuthError):
    # Internal only: readers convert this to "no session".
    kind = "StorageIntegrityFailure"
    status_code = 401


class StorageFailure(AuthError):
    kind = "StorageFailure"
    status_code = 500


class RandomnessFailure(AuthError):
    kind = "RandomnessFailure"
    status_code = 500
