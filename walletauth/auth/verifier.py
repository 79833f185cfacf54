from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from walletauth.auth.config import AuthConfig
from walletauth.auth.errors import ChallengeExpired, InvalidSignature, NonceMismatch
from walletauth.auth.message import MessageFormatError, SiweMessage, parse_message, parse_timestamp
from walletauth.auth.util import constant_time_equals, utcnow

logger = logging.getLogger(__name__)

# r (32) + s (32) + v (1), hex-encoded.
_SIGNATURE_RE = re.compile(r"^(0x)?[0-9a-fA-F]{130}$")


def _signature_bytes(signature: str) -> bytes:
    sig = (signature or "").strip() if isinstance(signature, str) else ""
    if not _SIGNATURE_RE.match(sig):
        raise InvalidSignature("signature must be 65 hex-encoded bytes")
    if sig.startswith("0x"):
        sig = sig[2:]
    return bytes.fromhex(sig)


def recover_address(message: str, signature: str) -> str:
    """
    Recover the signer of an EIP-191 personal_sign message.

    Returns:
        Lowercase 0x-prefixed address.

    Raises:
        InvalidSignature: malformed signature or recovery failure.
    """
    raw = _signature_bytes(signature)
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except Exception as e:
        # eth_account/eth_keys raise a mix of ValueError and library-specific errors here.
        raise InvalidSignature(f"signature recovery failed: {type(e).__name__}") from e
    return str(recovered).lower()


class SignatureVerifier:
    """
    Verify a signed Sign-In with Ethereum challenge.

    Pure with respect to session state: callers decide what a failure means for
    the session. The clock is injected so staleness checks are deterministic in tests.
    """

    def __init__(self, cfg: AuthConfig, clock: Callable[[], datetime] = utcnow) -> None:
        self._cfg = cfg
        self._clock = clock

    def parse(self, message: str) -> SiweMessage:
        try:
            return parse_message(message)
        except MessageFormatError as e:
            raise InvalidSignature(f"malformed challenge message: {e}") from e

    def verify(
        self,
        message: str,
        signature: str,
        expected_nonce: str,
        expected_address: Optional[str] = None,
        expected_chain_id: Optional[int] = None,
    ) -> str:
        """
        Verify `signature` over `message` and return the recovered address (lowercase).

        Check order matters for the reported kind: the nonce is compared before
        anything else, so a message carrying a different nonce is always
        NonceMismatch regardless of whether its signature is valid.

        Raises:
            InvalidSignature, NonceMismatch, ChallengeExpired
        """
        msg = self.parse(message)

        if not constant_time_equals(msg.nonce, expected_nonce):
            raise NonceMismatch("challenge nonce does not match the issued nonce")

        self._check_times(msg)

        if self._cfg.siwe_domain and msg.domain.lower() != self._cfg.siwe_domain.lower():
            raise InvalidSignature(f"unexpected domain {msg.domain!r}")

        recovered = recover_address(message, signature)

        if recovered != msg.address.lower():
            raise InvalidSignature("recovered signer does not match message address")
        if expected_address and recovered != expected_address.lower():
            raise InvalidSignature("recovered signer does not match expected address")
        if expected_chain_id and msg.chain_id != expected_chain_id:
            raise InvalidSignature("chain id does not match expected chain id")

        return recovered

    def _check_times(self, msg: SiweMessage) -> None:
        now = self._clock()
        skew = timedelta(seconds=self._cfg.clock_skew_seconds)

        issued_at = parse_timestamp(msg.issued_at)
        if issued_at is None:
            raise ChallengeExpired("missing or invalid Issued At")
        if now - issued_at > timedelta(seconds=self._cfg.challenge_ttl_seconds):
            raise ChallengeExpired("Issued At is older than the challenge window")
        if issued_at - now > skew:
            raise ChallengeExpired("Issued At is in the future")

        if msg.expiration_time is not None:
            expires = parse_timestamp(msg.expiration_time)
            if expires is None:
                raise InvalidSignature("invalid Expiration Time")
            if now >= expires:
                raise ChallengeExpired("challenge message has expired")

        if msg.not_before is not None:
            not_before = parse_timestamp(msg.not_before)
            if not_before is None:
                raise InvalidSignature("invalid Not Before")
            if not_before - now > skew:
                raise ChallengeExpired("challenge message is not yet valid")
