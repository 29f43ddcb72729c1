# tests/test_l402_store.py
"""
Unit tests for the L402 credential and settlement stores.
"""
import threading

import pytest

from app.l402.store import (
    CLEANUP_INTERVAL_SECONDS,
    InMemoryCredentialStore,
    InMemorySettlementStore,
)

HASH_A = "aa" * 32
HASH_B = "bb" * 32


class TestInMemoryCredentialStore:
    """Test credential -> payment hash bindings."""

    def test_unknown_credential_returns_none(self):
        """Unknown credentials resolve to None."""
        store = InMemoryCredentialStore()
        assert store.get("missing") is None

    def test_put_then_get(self):
        """A stored credential resolves to its payment hash."""
        store = InMemoryCredentialStore()
        store.put("cred-1", HASH_A)
        assert store.get("cred-1") == HASH_A

    def test_binding_is_never_overwritten(self):
        """A credential cannot be re-bound to another payment hash."""
        store = InMemoryCredentialStore()
        store.put("cred-1", HASH_A)

        with pytest.raises(ValueError):
            store.put("cred-1", HASH_B)

        assert store.get("cred-1") == HASH_A

    def test_credential_expires_after_ttl(self, clock):
        """Credentials disappear once the TTL has elapsed."""
        store = InMemoryCredentialStore(ttl_seconds=60, clock=clock)
        store.put("cred-1", HASH_A)

        clock.advance(59)
        assert store.get("cred-1") == HASH_A

        clock.advance(1)
        assert store.get("cred-1") is None

    def test_zero_ttl_disables_expiry(self, clock):
        """A TTL of 0 keeps credentials forever."""
        store = InMemoryCredentialStore(ttl_seconds=0, clock=clock)
        store.put("cred-1", HASH_A)

        clock.advance(10 * 365 * 86400)
        assert store.get("cred-1") == HASH_A

    def test_expired_entries_are_purged(self, clock):
        """Periodic cleanup removes expired entries that are never looked up again."""
        store = InMemoryCredentialStore(ttl_seconds=10, clock=clock)
        for i in range(5):
            store.put(f"cred-{i}", HASH_A)
        assert len(store) == 5

        clock.advance(CLEANUP_INTERVAL_SECONDS + 1)
        store.get("something-else")

        assert len(store) == 0


class TestInMemorySettlementStore:
    """Test payment hash -> proof-of-payment caching."""

    def test_put_pending_records_once(self):
        """A payment hash can only be registered as pending once."""
        store = InMemorySettlementStore()
        assert store.put_pending(HASH_A) is True
        assert store.put_pending(HASH_A) is False

    def test_pending_has_no_proof(self):
        """Pending payments have no proof yet."""
        store = InMemorySettlementStore()
        store.put_pending(HASH_A)

        assert store.get(HASH_A) is None
        assert store.is_pending(HASH_A) is True

    def test_unknown_hash_is_not_pending(self):
        """Hashes never registered are not pending."""
        store = InMemorySettlementStore()
        assert store.get(HASH_A) is None
        assert store.is_pending(HASH_A) is False

    def test_put_records_proof(self):
        """Recording a proof makes it readable."""
        store = InMemorySettlementStore()
        store.put_pending(HASH_A)

        assert store.put(HASH_A, b"\x01" * 32) is True
        assert store.get(HASH_A) == b"\x01" * 32
        assert store.is_pending(HASH_A) is False

    def test_first_write_wins(self):
        """A second proof for the same payment is ignored."""
        store = InMemorySettlementStore()
        store.put_pending(HASH_A)

        assert store.put(HASH_A, b"first") is True
        assert store.put(HASH_A, b"second") is False
        assert store.get(HASH_A) == b"first"

    def test_put_without_pending_entry(self):
        """Proofs can be recorded for hashes not registered as pending."""
        store = InMemorySettlementStore()
        assert store.put(HASH_B, b"proof") is True
        assert store.get(HASH_B) == b"proof"

    def test_put_pending_refused_after_settlement(self):
        """A settled payment hash cannot be registered again."""
        store = InMemorySettlementStore()
        store.put(HASH_A, b"proof")
        assert store.put_pending(HASH_A) is False
        assert store.get(HASH_A) == b"proof"

    def test_ttl_counts_from_issuance_not_settlement(self, clock):
        """Settling does not extend the record's lifetime."""
        store = InMemorySettlementStore(ttl_seconds=60, clock=clock)
        store.put_pending(HASH_A)

        clock.advance(50)
        store.put(HASH_A, b"proof")
        assert store.get(HASH_A) == b"proof"

        clock.advance(10)
        assert store.get(HASH_A) is None

    def test_concurrent_puts_have_single_winner(self):
        """Concurrent writers agree on a single recorded proof."""
        store = InMemorySettlementStore()
        store.put_pending(HASH_A)
        results = {}
        barrier = threading.Barrier(16)

        def writer(i):
            barrier.wait()
            results[i] = store.put(HASH_A, bytes([i]) * 32)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [i for i, recorded in results.items() if recorded]
        assert len(winners) == 1
        assert store.get(HASH_A) == bytes([winners[0]]) * 32
