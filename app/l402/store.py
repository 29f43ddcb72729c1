# app/l402/store.py
"""
Credential and settlement storage for the L402 engine.

Two mappings back the protocol:
- CredentialStore: credential token -> payment hash it is bound to
- SettlementStore: payment hash -> proof-of-payment (None while pending)

Both are abstract so a persistent implementation can replace the in-memory
ones. The in-memory stores are thread-safe and expire entries after a
configurable TTL measured from creation.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


class CredentialStore(ABC):
    """Maps issued credentials to the payment hash they were bound to."""

    @abstractmethod
    def get(self, credential: str) -> Optional[str]:
        """Return the bound payment hash, or None for unknown/expired credentials."""

    @abstractmethod
    def put(self, credential: str, payment_hash: str) -> None:
        """
        Bind a new credential to a payment hash.

        Raises:
            ValueError: If the credential is already bound
        """


class SettlementStore(ABC):
    """Caches proof-of-payment per payment hash."""

    @abstractmethod
    def put_pending(self, payment_hash: str) -> bool:
        """
        Record a payment hash with no proof yet.

        Returns:
            False if the payment hash is already known, True otherwise
        """

    @abstractmethod
    def get(self, payment_hash: str) -> Optional[bytes]:
        """Return the recorded proof, or None while pending or unknown."""

    @abstractmethod
    def put(self, payment_hash: str, preimage: bytes) -> bool:
        """
        Record the proof for a payment hash. The first recorded proof wins.

        Returns:
            True if this call recorded the proof, False if one was already stored
        """


@dataclass
class _Entry:
    value: Optional[object]
    created_at: float


class _ExpiringMap:
    """Lock-protected dict whose entries expire ttl_seconds after creation."""

    def __init__(self, ttl_seconds: Optional[int], clock: Callable[[], float]):
        self._ttl = ttl_seconds or None
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self.lock = threading.Lock()
        self._last_cleanup = clock()

    # Callers must hold self.lock for the methods below.

    def lookup(self, key: str) -> Optional[_Entry]:
        now = self._clock()
        self._maybe_cleanup(now)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry, now):
            del self._entries[key]
            return None
        return entry

    def insert(self, key: str, value: Optional[object]) -> None:
        self._entries[key] = _Entry(value=value, created_at=self._clock())

    def __len__(self) -> int:
        return len(self._entries)

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self._ttl is not None and now - entry.created_at >= self._ttl

    def _maybe_cleanup(self, now: float) -> None:
        if self._ttl is None or now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        stale = [key for key, entry in self._entries.items() if self._expired(entry, now)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Purged {len(stale)} expired L402 store entries")


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self._map = _ExpiringMap(ttl_seconds, clock)

    def get(self, credential: str) -> Optional[str]:
        with self._map.lock:
            entry = self._map.lookup(credential)
            return entry.value if entry else None

    def put(self, credential: str, payment_hash: str) -> None:
        with self._map.lock:
            if self._map.lookup(credential) is not None:
                raise ValueError("Credential already bound")
            self._map.insert(credential, payment_hash)

    def __len__(self) -> int:
        with self._map.lock:
            return len(self._map)


class InMemorySettlementStore(SettlementStore):
    """Process-local settlement cache."""

    def __init__(self, ttl_seconds: Optional[int] = None, clock: Callable[[], float] = time.time):
        self._map = _ExpiringMap(ttl_seconds, clock)

    def put_pending(self, payment_hash: str) -> bool:
        with self._map.lock:
            if self._map.lookup(payment_hash) is not None:
                return False
            self._map.insert(payment_hash, None)
            return True

    def get(self, payment_hash: str) -> Optional[bytes]:
        with self._map.lock:
            entry = self._map.lookup(payment_hash)
            return entry.value if entry else None

    def put(self, payment_hash: str, preimage: bytes) -> bool:
        with self._map.lock:
            entry = self._map.lookup(payment_hash)
            if entry is not None and entry.value is not None:
                return False
            if entry is not None:
                # Keep the issuance time so the TTL still counts from the challenge
                entry.value = preimage
            else:
                self._map.insert(payment_hash, preimage)
            return True

    def is_pending(self, payment_hash: str) -> bool:
        with self._map.lock:
            entry = self._map.lookup(payment_hash)
            return entry is not None and entry.value is None

    def __len__(self) -> int:
        with self._map.lock:
            return len(self._map)
