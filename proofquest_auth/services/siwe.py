from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from web3 import Web3

from proofquest_auth.core.config import settings
from proofquest_auth.core.errors import InvalidAddressError


# EIP-4361 message layout:
# <domain> wants you to sign in with your Ethereum account:
# <checksum address>
#
# <statement?>
#
# URI: <uri>
# Version: 1
# Chain ID: <chain_id>
# Nonce: <nonce>
# Issued At: <iso8601>
# Expiration Time: <iso8601?>
SIWE_RE = re.compile(
    r"^(?P<domain>[^\s]+) wants you to sign in with your Ethereum account:\n"
    r"(?P<address>0x[a-fA-F0-9]{40})\n\n"
    r"(?:(?P<statement>[^\n]+)\n\n)?"
    r"URI: (?P<uri>[^\n]+)\n"
    r"Version: (?P<version>[^\n]+)\n"
    r"Chain ID: (?P<chain_id>[1-9][0-9]*)\n"
    r"Nonce: (?P<nonce>[A-Za-z0-9]{8,})\n"
    r"Issued At: (?P<issued_at>[^\n]+)"
    r"(?:\nExpiration Time: (?P<expiration_time>[^\n]+))?$"
)

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
NONCE_RE = re.compile(r"^[A-Za-z0-9]{8,}$")

SIWE_VERSION = "1"
_DEFAULT = object()


def normalize_address(address: str) -> str:
    """Return the canonical lowercase form of an EVM address or raise InvalidAddressError."""
    if not isinstance(address, str) or not ADDRESS_RE.match(address.strip()):
        raise InvalidAddressError()
    return address.strip().lower()


def generate_nonce() -> str:
    # 16 random bytes, hex encoded; alphanumeric as EIP-4361 requires
    return "0x" + secrets.token_hex(16)


def check_challenge_fields(domain: str, chain_id: int) -> None:
    """Raise ValueError for a domain or chain ID that cannot appear in a challenge."""
    if not domain or any(ch.isspace() for ch in domain):
        raise ValueError("Domain must be non-empty and contain no whitespace")
    if chain_id <= 0:
        raise ValueError("Chain ID must be positive")


def _to_utc_millis(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    return _to_utc_millis(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _to_utc_millis(datetime.fromisoformat(text))


@dataclass(frozen=True)
class SiweMessage:
    domain: str
    address: str
    uri: str
    version: str
    chain_id: int
    nonce: str
    issued_at: datetime
    expiration_time: Optional[datetime] = None
    statement: Optional[str] = None

    def __post_init__(self) -> None:
        check_challenge_fields(self.domain, self.chain_id)
        if not NONCE_RE.match(self.nonce):
            raise ValueError("Nonce must be at least 8 alphanumeric characters")
        if self.statement is not None and ("\n" in self.statement or not self.statement.strip()):
            raise ValueError("Statement must be a single non-empty line")
        for label, text in (("URI", self.uri), ("Version", self.version)):
            if not text or "\n" in text:
                raise ValueError(f"{label} must be a single non-empty line")

        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "address", normalize_address(self.address))
        object.__setattr__(self, "issued_at", _to_utc_millis(self.issued_at))
        if self.expiration_time is not None:
            object.__setattr__(self, "expiration_time", _to_utc_millis(self.expiration_time))

    @property
    def checksum_address(self) -> str:
        return Web3.to_checksum_address(self.address)

    def prepare_message(self) -> str:
        """Render the exact text the wallet signs."""
        header = f"{self.domain} wants you to sign in with your Ethereum account:"
        prefix = f"{header}\n{self.checksum_address}\n\n"
        if self.statement is not None:
            prefix += f"{self.statement}\n\n"

        fields = [
            f"URI: {self.uri}",
            f"Version: {self.version}",
            f"Chain ID: {self.chain_id}",
            f"Nonce: {self.nonce}",
            f"Issued At: {format_timestamp(self.issued_at)}",
        ]
        if self.expiration_time is not None:
            fields.append(f"Expiration Time: {format_timestamp(self.expiration_time)}")
        return prefix + "\n".join(fields)


def create_siwe_message(
    domain: str,
    address: str,
    nonce: str,
    chain_id: int = 1,
    issued_at: Optional[datetime] = None,
    expiration_time: Optional[datetime] = None,
    statement=_DEFAULT,
) -> SiweMessage:
    if statement is _DEFAULT:
        statement = settings.siwe_statement

    return SiweMessage(
        domain=domain,
        address=address,
        uri=f"https://{domain}",
        version=SIWE_VERSION,
        chain_id=chain_id,
        nonce=nonce,
        issued_at=issued_at or datetime.now(timezone.utc),
        expiration_time=expiration_time,
        statement=statement,
    )


def parse_siwe_message(message: str) -> SiweMessage:
    m = SIWE_RE.match(message.strip())
    if not m:
        raise ValueError("Invalid SIWE message format")

    expiration = m.group("expiration_time")
    try:
        return SiweMessage(
            domain=m.group("domain"),
            address=m.group("address"),
            uri=m.group("uri"),
            version=m.group("version"),
            chain_id=int(m.group("chain_id")),
            nonce=m.group("nonce"),
            issued_at=parse_timestamp(m.group("issued_at")),
            expiration_time=parse_timestamp(expiration) if expiration else None,
            statement=m.group("statement"),
        )
    except InvalidAddressError as err:
        raise ValueError("Invalid SIWE message format") from err
