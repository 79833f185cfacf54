from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable

from walletauth.auth.errors import RandomnessFailure
from walletauth.auth.models import Session
from walletauth.auth.util import utcnow

logger = logging.getLogger(__name__)

# 16 bytes = 128 bits of entropy, hex-encoded (EIP-4361 nonces must be alphanumeric).
NONCE_NUM_BYTES = 16


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce.

    Raises:
        RandomnessFailure: if the OS cannot provide secure randomness. This is fatal
        for the request; there is no fallback source.
    """
    if num_bytes < NONCE_NUM_BYTES:
        num_bytes = NONCE_NUM_BYTES
    try:
        return secrets.token_hex(num_bytes)
    except (OSError, NotImplementedError) as e:
        logger.error("Secure randomness unavailable: %s", str(e))
        raise RandomnessFailure("secure randomness unavailable") from e


class NonceIssuer:
    """Issues single-use challenges and stores them on the session."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def issue(self, session: Session) -> str:
        nonce = generate_nonce()
        session.issue_challenge(nonce, self._clock().timestamp())
        return nonce
