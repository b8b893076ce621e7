"""
SIWE nonce registry.

Holds at most one live challenge nonce per normalized address. Issuing a new
nonce overwrites the previous one; a successful validate_and_consume deletes
it; reap() purges whatever expired without being used.

Two backends share the NonceRegistry interface:
- InMemoryNonceRegistry: a dict behind a lock, for a single process and tests
- RedisNonceRegistry: one key per address, atomic Lua compare-and-delete
"""
from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Dict, Optional

import redis

from proofquest_auth.core.config import settings
from proofquest_auth.core.errors import (
    NonceExpiredError,
    NonceMismatchError,
    NonceNotFoundError,
)
from proofquest_auth.services.siwe import generate_nonce, normalize_address

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NonceRecord:
    address: str
    nonce: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class NonceRegistry(ABC):
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Clock = utcnow):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.siwe_nonce_ttl_seconds
        self.clock = clock

    def _new_record(self, address: str, ttl_seconds: Optional[int]) -> NonceRecord:
        now = self.clock()
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        return NonceRecord(
            address=address,
            nonce=generate_nonce(),
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )

    @abstractmethod
    def issue(self, address: str, ttl_seconds: Optional[int] = None) -> NonceRecord:
        """Create a nonce for the address, replacing any previous one."""

    @abstractmethod
    def validate_and_consume(self, address: str, supplied_nonce: str) -> None:
        """
        Consume the live nonce for the address if it equals supplied_nonce.

        Raises:
            NonceNotFoundError: no record for the address
            NonceMismatchError: record exists but holds another nonce (record kept)
            NonceExpiredError: nonce matched but is past expires_at (record deleted)
        """

    @abstractmethod
    def reap(self) -> int:
        """Delete expired records and return how many were removed."""

    @abstractmethod
    def get(self, address: str) -> Optional[NonceRecord]:
        """Return the stored record without consuming it."""


class InMemoryNonceRegistry(NonceRegistry):
    def __init__(self, ttl_seconds: Optional[int] = None, clock: Clock = utcnow):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._records: Dict[str, NonceRecord] = {}
        self._lock = threading.Lock()

    def issue(self, address: str, ttl_seconds: Optional[int] = None) -> NonceRecord:
        address = normalize_address(address)
        record = self._new_record(address, ttl_seconds)
        with self._lock:
            self._records[address] = record
        logger.info("Issued SIWE nonce for %s (expires %s)", address, record.expires_at.isoformat())
        return record

    def validate_and_consume(self, address: str, supplied_nonce: str) -> None:
        address = normalize_address(address)
        with self._lock:
            record = self._records.get(address)
            if record is None:
                raise NonceNotFoundError()
            if record.nonce != supplied_nonce:
                raise NonceMismatchError()
            del self._records[address]
            if record.is_expired(self.clock()):
                raise NonceExpiredError()
        logger.info("Consumed SIWE nonce for %s", address)

    def reap(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [a for a, r in self._records.items() if r.expires_at < now]
            for address in expired:
                del self._records[address]
        return len(expired)

    def get(self, address: str) -> Optional[NonceRecord]:
        with self._lock:
            return self._records.get(normalize_address(address))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# KEYS[1] = nonce key, ARGV[1] = supplied nonce, ARGV[2] = now (epoch ms)
CONSUME_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return 'not_found'
end
local record = cjson.decode(raw)
if record['nonce'] ~= ARGV[1] then
  return 'mismatch'
end
redis.call('DEL', KEYS[1])
if tonumber(ARGV[2]) > tonumber(record['expires_at']) then
  return 'expired'
end
return 'ok'
"""

# KEYS[1] = nonce key, ARGV[1] = now (epoch ms)
REAP_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
  return 0
end
local record = cjson.decode(raw)
if tonumber(record['expires_at']) < tonumber(ARGV[1]) then
  redis.call('DEL', KEYS[1])
  return 1
end
return 0
"""


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class RedisNonceRegistry(NonceRegistry):
    KEY_PREFIX = "siwe:nonce:"

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: Optional[int] = None,
        grace_seconds: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self.r = client
        self.grace_seconds = (
            grace_seconds if grace_seconds is not None else settings.nonce_expiry_grace_seconds
        )
        self._consume = self.r.register_script(CONSUME_SCRIPT)
        self._reap_key = self.r.register_script(REAP_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisNonceRegistry":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def nonce_key(self, address: str) -> str:
        return f"{self.KEY_PREFIX}{address}"

    def issue(self, address: str, ttl_seconds: Optional[int] = None) -> NonceRecord:
        address = normalize_address(address)
        record = self._new_record(address, ttl_seconds)
        value = json.dumps({
            "nonce": record.nonce,
            "issued_at": _to_ms(record.issued_at),
            "expires_at": _to_ms(record.expires_at),
        })
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        # SET overwrites atomically; redis drops the key on its own after the grace period
        self.r.set(self.nonce_key(address), value, px=(ttl + self.grace_seconds) * 1000)
        logger.info("Issued SIWE nonce for %s (expires %s)", address, record.expires_at.isoformat())
        return record

    def validate_and_consume(self, address: str, supplied_nonce: str) -> None:
        address = normalize_address(address)
        outcome = self._consume(
            keys=[self.nonce_key(address)],
            args=[supplied_nonce, _to_ms(self.clock())],
        )
        if isinstance(outcome, bytes):
            outcome = outcome.decode()

        if outcome == "not_found":
            raise NonceNotFoundError()
        if outcome == "mismatch":
            raise NonceMismatchError()
        if outcome == "expired":
            raise NonceExpiredError()
        logger.info("Consumed SIWE nonce for %s", address)

    def reap(self) -> int:
        now_ms = _to_ms(self.clock())
        removed = 0
        for key in self.r.scan_iter(match=f"{self.KEY_PREFIX}*"):
            removed += int(self._reap_key(keys=[key], args=[now_ms]))
        return removed

    def get(self, address: str) -> Optional[NonceRecord]:
        address = normalize_address(address)
        raw = self.r.get(self.nonce_key(address))
        if not raw:
            return None
        data = json.loads(raw)
        return NonceRecord(
            address=address,
            nonce=data["nonce"],
            issued_at=_from_ms(data["issued_at"]),
            expires_at=_from_ms(data["expires_at"]),
        )


_registry_lock = threading.Lock()


@lru_cache
def _build_nonce_registry() -> NonceRegistry:
    if settings.nonce_backend == "redis":
        return RedisNonceRegistry.from_url(settings.redis_url)
    return InMemoryNonceRegistry()


def get_nonce_registry() -> NonceRegistry:
    """Process-wide registry chosen by settings.nonce_backend."""
    # lru_cache alone lets two first callers each build an instance
    with _registry_lock:
        return _build_nonce_registry()
