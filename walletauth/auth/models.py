from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    CHALLENGE_ISSUED = "challenge_issued"
    AUTHENTICATED = "authenticated"
    LINKED = "linked"
    TERMINATED = "terminated"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ExternalIdentity:
    """Secondary identity attached to a wallet-authenticated session."""

    provider: str  # github
    id: str  # stable provider-side id
    login: str  # handle, may change over time


@dataclass
class Session:
    """
    Authentication state carried in the session cookie.

    Mutate only through the methods below; they keep the invariant
    `authenticated -> address != ""` and mark the session for persistence.
    """

    nonce: Optional[str] = None
    address: str = ""
    chain_id: int = 0
    issued_at: Optional[float] = None  # epoch seconds when the nonce was issued
    authenticated: bool = False
    github: Optional[ExternalIdentity] = None

    is_new: bool = field(default=True, compare=False, repr=False)
    modified: bool = field(default=False, compare=False, repr=False)

    @property
    def state(self) -> SessionState:
        if self.authenticated:
            return SessionState.LINKED if self.github is not None else SessionState.AUTHENTICATED
        if self.nonce:
            return SessionState.CHALLENGE_ISSUED
        return SessionState.UNAUTHENTICATED

    def issue_challenge(self, nonce: str, issued_at: float) -> None:
        # A fresh challenge starts a fresh login.
        self.nonce = nonce
        self.issued_at = issued_at
        self.address = ""
        self.chain_id = 0
        self.authenticated = False
        self.github = None
        self.modified = True

    def clear_challenge(self) -> None:
        self.nonce = None
        self.issued_at = None
        self.modified = True

    def authenticate(self, address: str, chain_id: int) -> None:
        if not address:
            raise ValueError("address is required to authenticate a session")
        self.nonce = None
        self.issued_at = None
        self.address = address.lower()
        self.chain_id = int(chain_id)
        self.authenticated = True
        self.modified = True

    def link(self, identity: ExternalIdentity) -> None:
        self.github = identity
        self.modified = True

    def unlink(self) -> None:
        self.github = None
        self.modified = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "v": 1,
            "nonce": self.nonce,
            "address": self.address,
            "chainId": self.chain_id,
            "issuedAt": self.issued_at,
            "authenticated": self.authenticated,
            "github": (
                {"provider": self.github.provider, "id": self.github.id, "login": self.github.login}
                if self.github is not None
                else None
            ),
        }

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Session":
        """
        Rebuild a session from a decoded cookie payload.

        Raises ValueError on any shape/type problem or invariant violation.
        """
        if not isinstance(data, dict) or data.get("v") != 1:
            raise ValueError("unsupported session payload")

        nonce = data.get("nonce")
        if nonce is not None and (not isinstance(nonce, str) or not nonce):
            raise ValueError("invalid nonce")
        address = data.get("address") or ""
        if not isinstance(address, str):
            raise ValueError("invalid address")
        chain_id = data.get("chainId") or 0
        if not isinstance(chain_id, int) or isinstance(chain_id, bool):
            raise ValueError("invalid chainId")
        issued_at = data.get("issuedAt")
        if issued_at is not None and not isinstance(issued_at, (int, float)):
            raise ValueError("invalid issuedAt")
        authenticated = data.get("authenticated")
        if not isinstance(authenticated, bool):
            raise ValueError("invalid authenticated flag")
        if authenticated and not address:
            raise ValueError("authenticated session without address")

        github = None
        gh = data.get("github")
        if gh is not None:
            if not isinstance(gh, dict) or not gh.get("id") or not gh.get("login"):
                raise ValueError("invalid github identity")
            github = ExternalIdentity(
                provider=str(gh.get("provider") or "github"),
                id=str(gh["id"]),
                login=str(gh["login"]),
            )
            if not authenticated:
                raise ValueError("linked identity on unauthenticated session")

        return cls(
            nonce=nonce,
            address=address.lower(),
            chain_id=chain_id,
            issued_at=float(issued_at) if issued_at is not None else None,
            authenticated=authenticated,
            github=github,
            is_new=False,
            modified=False,
        )


@dataclass(frozen=True)
class CurrentIdentity:
    """Read-side view of a session. Never carries the nonce."""

    authenticated: bool
    address: Optional[str] = None
    chain_id: Optional[int] = None
    github: Optional[ExternalIdentity] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.authenticated:
            return {"authenticated": False}
        out: Dict[str, Any] = {
            "authenticated": True,
            "address": self.address,
            "chainId": self.chain_id,
        }
        if self.github is not None:
            out["githubIdentity"] = {"id": self.github.id, "login": self.github.login}
        return out


UNAUTHENTICATED = CurrentIdentity(authenticated=False)
