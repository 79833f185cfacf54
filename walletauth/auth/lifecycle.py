"""
Session lifecycle (authentication state machine).

    UNAUTHENTICATED --issue--> CHALLENGE_ISSUED --verify ok--> AUTHENTICATED --link--> LINKED
    CHALLENGE_ISSUED --InvalidSignature--> CHALLENGE_ISSUED (nonce kept until its window elapses)
    CHALLENGE_ISSUED --NonceMismatch/ChallengeExpired--> UNAUTHENTICATED (nonce cleared)
    any --logout--> TERMINATED

Verify checks the presented nonce before the age of the pending challenge, so a
message carrying any other nonce is always NonceMismatch.

TERMINATED and EXPIRED are never observed on a live session: the cookie is gone
or rejected, so the next request starts over with a fresh session.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from walletauth.auth.config import AuthConfig
from walletauth.auth.errors import (
    ChallengeExpired,
    InvalidSignature,
    NonceMismatch,
    PreconditionFailed,
)
from walletauth.auth.github import GitHubOAuthExchanger, IdentityExchanger
from walletauth.auth.models import UNAUTHENTICATED, CurrentIdentity, ExternalIdentity, Session, SessionState
from walletauth.auth.nonce import NonceIssuer
from walletauth.auth.session import SessionScope
from walletauth.auth.util import constant_time_equals, utcnow
from walletauth.auth.verifier import SignatureVerifier

logger = logging.getLogger(__name__)

_LINKABLE_STATES = (SessionState.AUTHENTICATED, SessionState.LINKED)


class SessionLifecycleManager:
    def __init__(
        self,
        cfg: AuthConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
        issuer: Optional[NonceIssuer] = None,
        verifier: Optional[SignatureVerifier] = None,
        exchanger: Optional[IdentityExchanger] = None,
    ) -> None:
        self._cfg = cfg
        self._clock = clock
        self._issuer = issuer or NonceIssuer(clock)
        self._verifier = verifier or SignatureVerifier(cfg, clock)
        self._exchanger = exchanger

    @property
    def exchanger(self) -> IdentityExchanger:
        if self._exchanger is None:
            self._exchanger = GitHubOAuthExchanger(self._cfg)
        return self._exchanger

    def issue(self, session: Session) -> str:
        return self._issuer.issue(session)

    def verify(self, session: Session, message: str, signature: str) -> CurrentIdentity:
        """
        Verify a signed challenge against the session's pending nonce.

        On success the session is AUTHENTICATED and the nonce is consumed. On
        failure the session transition depends on the kind (see module docstring)
        and the error is re-raised for the caller to map.
        """
        if session.state != SessionState.CHALLENGE_ISSUED or not session.nonce:
            # Already consumed (replay or double submit) or never issued.
            logger.info("Verify rejected: no pending challenge (state=%s)", session.state.value)
            raise NonceMismatch("no pending challenge on session")

        try:
            parsed = self._verifier.parse(message)
        except InvalidSignature as e:
            logger.info("Verify rejected (%s): %s", e.kind, e.reason)
            raise
        if not constant_time_equals(parsed.nonce, session.nonce):
            session.clear_challenge()
            logger.info("Verify rejected (NonceMismatch): message nonce is not the pending nonce")
            raise NonceMismatch("challenge nonce does not match the issued nonce")

        issued_at = session.issued_at or 0.0
        age = self._clock().timestamp() - issued_at
        if age > self._cfg.challenge_ttl_seconds:
            session.clear_challenge()
            logger.info("Verify rejected: pending challenge is %.0fs old", age)
            raise ChallengeExpired("pending challenge is older than the challenge window")

        try:
            address = self._verifier.verify(message, signature, expected_nonce=session.nonce)
        except (NonceMismatch, ChallengeExpired) as e:
            session.clear_challenge()
            logger.info("Verify rejected (%s): %s", e.kind, e.reason)
            raise
        except InvalidSignature as e:
            logger.info("Verify rejected (%s): %s", e.kind, e.reason)
            raise

        session.authenticate(address, parsed.chain_id)
        logger.info("Wallet authenticated: address=%s chain_id=%d", address, parsed.chain_id)
        return self.current_identity(session)

    def link(self, session: Session, code: str) -> CurrentIdentity:
        """
        Attach an external identity. The provider is only contacted when the
        session is already wallet-authenticated; failures leave the session as is.
        """
        self.require_linkable(session)
        identity: ExternalIdentity = self.exchanger.exchange_code(code)
        session.link(identity)
        logger.info("Linked %s identity %s to %s", identity.provider, identity.login, session.address)
        return self.current_identity(session)

    def require_linkable(self, session: Session) -> None:
        if session.state not in _LINKABLE_STATES:
            raise PreconditionFailed(f"cannot link from state {session.state.value}")

    def unlink(self, session: Session) -> CurrentIdentity:
        if session.state == SessionState.LINKED:
            session.unlink()
        elif session.state != SessionState.AUTHENTICATED:
            raise PreconditionFailed(f"cannot unlink from state {session.state.value}")
        return self.current_identity(session)

    def logout(self, scope: SessionScope) -> None:
        # Idempotent: clearing an absent cookie is the same response.
        scope.terminate()

    @staticmethod
    def current_identity(session: Optional[Session]) -> CurrentIdentity:
        if session is None or not session.authenticated:
            return UNAUTHENTICATED
        return CurrentIdentity(
            authenticated=True,
            address=session.address,
            chain_id=session.chain_id,
            github=session.github,
        )
