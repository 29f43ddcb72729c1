# app/l402/service.py
"""
Process-wide wiring of the L402 engine.

The service owns one payment backend, the credential and settlement stores,
and the issuer/verifier built on top of them. The HTTP layer obtains it via
get_l402_service(); tests install their own with set_l402_service().
"""
import logging
import threading
from typing import Optional

from app.core.config import settings
from app.l402.backend import PaymentBackend
from app.l402.challenge import ChallengeIssuer
from app.l402.simulator import SimulatedPaymentBackend
from app.l402.store import (
    CredentialStore,
    InMemoryCredentialStore,
    InMemorySettlementStore,
    SettlementStore,
)
from app.l402.verifier import CredentialVerifier
from app.services.lnd_api import LndPaymentBackend

logger = logging.getLogger(__name__)


class L402Service:
    """Bundles the issuer and verifier sharing one backend and one pair of stores."""

    def __init__(
        self,
        backend: PaymentBackend,
        credential_store: Optional[CredentialStore] = None,
        settlement_store: Optional[SettlementStore] = None,
        ttl_seconds: Optional[int] = None,
        invoice_memo: Optional[str] = None
    ):
        self.backend = backend
        self.credential_store = (
            credential_store if credential_store is not None else InMemoryCredentialStore(ttl_seconds)
        )
        self.settlement_store = (
            settlement_store if settlement_store is not None else InMemorySettlementStore(ttl_seconds)
        )
        self.issuer = ChallengeIssuer(
            backend=backend,
            credential_store=self.credential_store,
            settlement_store=self.settlement_store,
            default_memo=invoice_memo
        )
        self.verifier = CredentialVerifier(
            backend=backend,
            credential_store=self.credential_store,
            settlement_store=self.settlement_store
        )


def build_payment_backend(kind: Optional[str] = None) -> PaymentBackend:
    """Create the payment backend selected by L402_BACKEND."""
    kind = kind or settings.L402_BACKEND
    if kind == "simulated":
        logger.warning("L402: Using the simulated payment backend; invoices are not real")
        return SimulatedPaymentBackend()
    if kind == "lnd":
        logger.info(f"L402: Using LND payment backend at {settings.LND_REST_URL}")
        return LndPaymentBackend()
    raise ValueError(f"Unknown payment backend: {kind}")


def build_l402_service() -> L402Service:
    return L402Service(
        backend=build_payment_backend(),
        ttl_seconds=settings.L402_CREDENTIAL_TTL_SECONDS,
        invoice_memo=settings.L402_INVOICE_MEMO
    )


# Global service instance
_service: Optional[L402Service] = None
_service_lock = threading.Lock()


def get_l402_service() -> L402Service:
    global _service

    if _service is None:
        with _service_lock:
            if _service is None:
                _service = build_l402_service()

    return _service


def set_l402_service(service: Optional[L402Service]) -> None:
    """Install a specific service instance, or None to rebuild from settings on next use."""
    global _service
    with _service_lock:
        _service = service


def reset_l402_service() -> None:
    set_l402_service(None)
