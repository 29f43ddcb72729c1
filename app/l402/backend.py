# app/l402/backend.py
"""
Payment backend contract consumed by the L402 engine.

The engine only knows two operations: create an invoice, and ask whether a
payment hash has settled. Transport and encoding are the adapter's business;
adapters must raise BackendUnavailable when the node cannot be reached and
BackendError for anything else the node reports as a failure.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Invoice:
    """An invoice created by the payment backend."""
    payment_hash: str  # lowercase hex
    payment_request: str


@dataclass(frozen=True)
class Settlement:
    """Settlement status of a single invoice."""
    settled: bool
    preimage: Optional[bytes] = None


class PaymentBackend(ABC):
    """Capability interface for a Lightning payment node."""

    @abstractmethod
    def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        """
        Create an invoice for the given amount.

        Raises:
            BackendUnavailable: If the node cannot be reached
            BackendError: If the node rejects the request or answers garbage
        """

    @abstractmethod
    def get_settlement(self, payment_hash: str) -> Settlement:
        """
        Report whether the invoice identified by payment_hash is settled.

        Raises:
            BackendUnavailable: If the node cannot be reached
            BackendError: If the node rejects the request or answers garbage
        """
