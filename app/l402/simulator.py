# app/l402/simulator.py
"""
In-process payment backend for local development and tests.

Invoices get a real random preimage and its sha256 payment hash, so proofs
behave exactly like the ones a Lightning node reveals. Nothing is settled
until settle() is called.
"""
import hashlib
import logging
import secrets
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from app.l402.backend import Invoice, PaymentBackend, Settlement
from app.l402.errors import BackendError, BackendUnavailable

logger = logging.getLogger(__name__)


@dataclass
class SimulatedInvoice:
    amount_sats: int
    memo: Optional[str]
    preimage: bytes
    payment_request: str
    settled: bool = False


class SimulatedPaymentBackend(PaymentBackend):
    """
    Payment backend that keeps invoices in memory.

    Set `available` to False to simulate a node outage; every call then
    raises BackendUnavailable.
    """

    def __init__(self):
        self.available = True
        self._invoices: Dict[str, SimulatedInvoice] = {}
        self._lock = threading.Lock()
        self.settlement_queries = 0

    def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        self._check_available("create_invoice")

        preimage = secrets.token_bytes(32)
        payment_hash = hashlib.sha256(preimage).hexdigest()
        payment_request = f"lnbcrt{amount_sats}n1p{secrets.token_hex(24)}"

        with self._lock:
            self._invoices[payment_hash] = SimulatedInvoice(
                amount_sats=amount_sats,
                memo=memo,
                preimage=preimage,
                payment_request=payment_request,
            )

        logger.debug(f"Simulated invoice created: {payment_hash} ({amount_sats} sats)")
        return Invoice(payment_hash=payment_hash, payment_request=payment_request)

    def get_settlement(self, payment_hash: str) -> Settlement:
        self._check_available("get_settlement")

        with self._lock:
            self.settlement_queries += 1
            invoice = self._invoices.get(payment_hash)
            if invoice is None:
                raise BackendError(f"Invoice not found: {payment_hash}")
            if not invoice.settled:
                return Settlement(settled=False)
            return Settlement(settled=True, preimage=invoice.preimage)

    def settle(self, payment_hash: str) -> bytes:
        """Mark an invoice as paid and return its preimage, as a paying wallet would see it."""
        with self._lock:
            invoice = self._invoices.get(payment_hash)
            if invoice is None:
                raise KeyError(payment_hash)
            invoice.settled = True
            return invoice.preimage

    def get_invoice(self, payment_hash: str) -> Optional[SimulatedInvoice]:
        with self._lock:
            return self._invoices.get(payment_hash)

    def _check_available(self, operation: str) -> None:
        if not self.available:
            raise BackendUnavailable(f"Simulated backend offline during {operation}")
