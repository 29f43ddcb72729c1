# app/l402/challenge.py
"""
L402 challenge issuance.

A challenge binds a fresh, unguessable credential to a newly created invoice.
The client pays the invoice and later presents the credential together with
the preimage revealed by the payment.
"""
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

from app.l402 import audit
from app.l402.backend import PaymentBackend
from app.l402.errors import BackendError, InternalError, InvalidAmount, L402Error
from app.l402.store import CredentialStore, SettlementStore

logger = logging.getLogger(__name__)

# L402 header names
WWW_AUTHENTICATE_HEADER = "WWW-Authenticate"
L402_INVOICE_HEADER = "L402-Invoice"
L402_MACAROON_HEADER = "L402-Macaroon"
L402_SCHEME = "L402"

# 256 bits of randomness per credential
CREDENTIAL_ENTROPY_BYTES = 32


@dataclass(frozen=True)
class Challenge:
    """An (invoice, credential) pair handed to an unauthenticated client."""
    payment_hash: str
    invoice: str
    credential: str
    amount_sats: int

    def to_headers(self) -> Dict[str, str]:
        """Render the challenge as L402 response headers."""
        return {
            WWW_AUTHENTICATE_HEADER: f'{L402_SCHEME} token="{self.payment_hash}"',
            L402_INVOICE_HEADER: self.invoice,
            L402_MACAROON_HEADER: self.credential,
        }


def generate_credential() -> str:
    """Generate a hex credential token with CREDENTIAL_ENTROPY_BYTES of entropy."""
    return secrets.token_hex(CREDENTIAL_ENTROPY_BYTES)


def validate_amount(amount_sats) -> int:
    """
    Check that an invoice amount is a positive whole number of satoshis.

    Raises:
        InvalidAmount: For non-integers, booleans and non-positive values
    """
    if isinstance(amount_sats, bool) or not isinstance(amount_sats, int):
        raise InvalidAmount(f"Invoice amount must be an integer number of satoshis, got {amount_sats!r}")
    if amount_sats <= 0:
        raise InvalidAmount(f"Invoice amount must be positive, got {amount_sats}")
    return amount_sats


class ChallengeIssuer:
    """
    Issues L402 challenges.

    Each call creates a new invoice and a new credential; there is no
    deduplication between calls.
    """

    def __init__(
        self,
        backend: PaymentBackend,
        credential_store: CredentialStore,
        settlement_store: SettlementStore,
        default_memo: Optional[str] = None
    ):
        self.backend = backend
        self.credential_store = credential_store
        self.settlement_store = settlement_store
        self.default_memo = default_memo

    def issue_challenge(
        self,
        amount_sats: int,
        memo: Optional[str] = None,
        resource: Optional[str] = None,
        client_ip: Optional[str] = None
    ) -> Challenge:
        """
        Create an invoice for amount_sats and bind a fresh credential to it.

        Args:
            amount_sats: Price of the resource in satoshis
            memo: Invoice memo, defaults to the issuer's default memo
            resource: Resource being paid for (audit only)
            client_ip: Requesting client (audit only)

        Returns:
            The issued Challenge

        Raises:
            InvalidAmount: If amount_sats is not a positive integer
            BackendUnavailable: If the payment backend cannot be reached
            BackendError: For any other backend failure
            InternalError: If the backend hands out a payment hash that is already bound
        """
        validate_amount(amount_sats)

        try:
            invoice = self.backend.create_invoice(amount_sats, memo or self.default_memo)
        except L402Error as e:
            logger.error(f"L402: create_invoice failed for {amount_sats} sats: {e.error_code}: {e}")
            audit.log_backend_error("create_invoice", e.error_code, e.message)
            raise
        except Exception as e:
            logger.error(f"L402: Unexpected create_invoice failure for {amount_sats} sats: {e}", exc_info=True)
            audit.log_backend_error("create_invoice", BackendError.error_code, str(e))
            raise BackendError(f"Invoice creation failed: {e}") from e

        payment_hash = invoice.payment_hash
        if not self.settlement_store.put_pending(payment_hash):
            logger.error(f"L402: Backend returned payment hash {payment_hash} which is already bound")
            raise InternalError("Payment hash already bound to a credential")

        credential = generate_credential()
        try:
            self.credential_store.put(credential, payment_hash)
        except ValueError as e:
            raise InternalError("Credential collision") from e

        logger.info(f"L402: Issued challenge for {amount_sats} sats (payment_hash={payment_hash})")
        audit.log_challenge_issued(
            payment_hash=payment_hash,
            amount_sats=amount_sats,
            resource=resource,
            client_ip=client_ip
        )

        return Challenge(
            payment_hash=payment_hash,
            invoice=invoice.payment_request,
            credential=credential,
            amount_sats=amount_sats,
        )
