"""
EIP-4361 (Sign-In with Ethereum) challenge message.

Layout:

    {domain} wants you to sign in with your Ethereum account:
    {address}

    {statement}

    URI: {uri}
    Version: 1
    Chain ID: {chain_id}
    Nonce: {nonce}
    Issued At: {issued_at}
    Expiration Time: {expiration_time}    (optional)
    Not Before: {not_before}              (optional)
    Request ID: {request_id}              (optional)
    Resources:                            (optional)
    - {resource}

The statement (and the blank line after it) is optional. Parsing is tolerant of
CRLF line endings; signatures are always checked against the exact submitted text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dateutil import parser as date_parser

HEADER_SUFFIX = " wants you to sign in with your Ethereum account:"
SIWE_VERSION = "1"

_HEADER_RE = re.compile(
    r"^(?:(?P<scheme>[a-zA-Z][a-zA-Z0-9+\-.]*)://)?(?P<domain>[^\s/]+)"
    + re.escape(HEADER_SUFFIX)
    + r"$"
)
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_CHAIN_ID_RE = re.compile(r"[0-9]+")

# Tag -> attribute, in the order the fields must appear.
_FIELDS = (
    ("URI", "uri"),
    ("Version", "version"),
    ("Chain ID", "chain_id"),
    ("Nonce", "nonce"),
    ("Issued At", "issued_at"),
    ("Expiration Time", "expiration_time"),
    ("Not Before", "not_before"),
    ("Request ID", "request_id"),
)
_REQUIRED = ("uri", "version", "chain_id")


class MessageFormatError(ValueError):
    pass


@dataclass(frozen=True)
class SiweMessage:
    domain: str
    address: str
    uri: str
    chain_id: int
    version: str = SIWE_VERSION
    nonce: Optional[str] = None
    issued_at: Optional[str] = None
    statement: Optional[str] = None
    scheme: Optional[str] = None
    expiration_time: Optional[str] = None
    not_before: Optional[str] = None
    request_id: Optional[str] = None
    resources: List[str] = field(default_factory=list)

    def prepare(self) -> str:
        """Render the canonical message text that the wallet signs."""
        header = f"{self.scheme}://{self.domain}" if self.scheme else self.domain
        lines = [header + HEADER_SUFFIX, self.address, ""]
        if self.statement:
            lines.append(self.statement)
        lines.append("")
        lines.append(f"URI: {self.uri}")
        lines.append(f"Version: {self.version}")
        lines.append(f"Chain ID: {self.chain_id}")
        if self.nonce is not None:
            lines.append(f"Nonce: {self.nonce}")
        if self.issued_at is not None:
            lines.append(f"Issued At: {self.issued_at}")
        if self.expiration_time is not None:
            lines.append(f"Expiration Time: {self.expiration_time}")
        if self.not_before is not None:
            lines.append(f"Not Before: {self.not_before}")
        if self.request_id is not None:
            lines.append(f"Request ID: {self.request_id}")
        if self.resources:
            lines.append("Resources:")
            lines.extend(f"- {r}" for r in self.resources)
        return "\n".join(lines)


def format_timestamp(dt: datetime) -> str:
    """RFC 3339 UTC timestamp with a `Z` suffix (e.g. 2024-05-01T12:00:00Z)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp; returns None when missing, malformed, or lacking an offset."""
    if not value:
        return None
    try:
        dt = date_parser.isoparse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if dt.tzinfo is None:
        return None
    return dt


def parse_message(text: str) -> SiweMessage:
    """
    Parse EIP-4361 message text into its fields.

    Nonce and Issued At are optional at this level: the verifier reports their
    absence as NonceMismatch / ChallengeExpired rather than a format error.

    Raises:
        MessageFormatError: if the text does not follow the layout.
    """
    if not isinstance(text, str) or not text.strip():
        raise MessageFormatError("empty message")

    lines = [ln.rstrip("\r") for ln in text.split("\n")]
    if len(lines) < 2:
        raise MessageFormatError("message too short")

    m = _HEADER_RE.match(lines[0])
    if not m:
        raise MessageFormatError("invalid header line")
    address = lines[1].strip()
    if not _ADDRESS_RE.match(address):
        raise MessageFormatError("invalid address line")

    idx = 2
    statement_lines: List[str] = []
    while idx < len(lines) and not lines[idx].startswith("URI: "):
        if lines[idx].strip():
            statement_lines.append(lines[idx].strip())
        idx += 1
    if len(statement_lines) > 1:
        raise MessageFormatError("statement must be a single line")
    statement = statement_lines[0] if statement_lines else None

    values: Dict[str, str] = {}
    resources: List[str] = []
    order = 0
    while idx < len(lines):
        line = lines[idx]
        idx += 1
        if not line:
            # Trailing newline(s) only.
            if any(rest.strip() for rest in lines[idx:]):
                raise MessageFormatError("unexpected blank line")
            break
        if line == "Resources:":
            while idx < len(lines) and lines[idx].startswith("- "):
                resources.append(lines[idx][2:].strip())
                idx += 1
            continue
        tag, sep, value = line.partition(": ")
        if not sep:
            raise MessageFormatError(f"malformed field line: {line[:32]!r}")
        for pos, (label, attr) in enumerate(_FIELDS):
            if label == tag:
                if pos < order or attr in values:
                    raise MessageFormatError(f"field out of order or repeated: {label}")
                order = pos
                values[attr] = value.strip()
                break
        else:
            raise MessageFormatError(f"unknown field: {tag[:32]!r}")

    for attr in _REQUIRED:
        if not values.get(attr):
            raise MessageFormatError(f"missing field: {attr}")
    if values["version"] != SIWE_VERSION:
        raise MessageFormatError("unsupported version")
    if not _CHAIN_ID_RE.fullmatch(values["chain_id"]):
        raise MessageFormatError("invalid chain id")
    chain_id = int(values["chain_id"])
    return SiweMessage(
        domain=m.group("domain"),
        scheme=m.group("scheme"),
        address=address,
        statement=statement,
        uri=values["uri"],
        version=values["version"],
        chain_id=chain_id,
        nonce=values.get("nonce"),
        issued_at=values.get("issued_at"),
        expiration_time=values.get("expiration_time"),
        not_before=values.get("not_before"),
        request_id=values.get("request_id"),
        resources=resources,
    )


def build_challenge(
    *,
    domain: str,
    address: str,
    uri: str,
    chain_id: int,
    nonce: str,
    issued_at: datetime,
    statement: Optional[str] = None,
    expiration_time: Optional[datetime] = None,
) -> SiweMessage:
    return SiweMessage(
        domain=domain,
        address=address,
        uri=uri,
        chain_id=chain_id,
        nonce=nonce,
        issued_at=format_timestamp(issued_at),
        statement=statement,
        expiration_time=format_timestamp(expiration_time) if expiration_time else None,
    )
