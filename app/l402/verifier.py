# app/l402/verifier.py
"""
L402 credential verification.

Verification runs in three steps:
1. Resolve the presented credential to the payment hash it was bound to
2. Make sure that payment is settled, asking the backend on a cache miss
3. Compare the presented proof-of-payment with the stored one in constant time

Backend failures always propagate as BackendUnavailable/BackendError and are
never reported as a failed verification, so an outage cannot be mistaken
for an unpaid invoice.
"""
import hmac
import logging
from typing import Optional

from app.l402 import audit
from app.l402.backend import PaymentBackend
from app.l402.challenge import L402_SCHEME
from app.l402.errors import (
    AuthenticationFailed,
    BackendError,
    ChallengeRequired,
    InvalidScheme,
    L402Error,
)
from app.l402.store import CredentialStore, SettlementStore

logger = logging.getLogger(__name__)


def parse_authorization(authorization: Optional[str]) -> str:
    """
    Extract the hex proof-of-payment from an `Authorization: L402 <proof>` header.

    Returns:
        The proof string; empty when the header carries the scheme only

    Raises:
        ChallengeRequired: If the header is missing or blank
        InvalidScheme: If the scheme is not L402
    """
    if not authorization or not authorization.strip():
        raise ChallengeRequired()

    parts = authorization.strip().split(None, 1)
    if parts[0] != L402_SCHEME:
        raise InvalidScheme()

    return parts[1].strip() if len(parts) > 1 else ""


def _credential_hint(credential: str) -> str:
    return credential[:8] + "..." if len(credential) > 8 else credential


class CredentialVerifier:
    """Checks (proof, credential) pairs presented on protected requests."""

    def __init__(
        self,
        backend: PaymentBackend,
        credential_store: CredentialStore,
        settlement_store: SettlementStore
    ):
        self.backend = backend
        self.credential_store = credential_store
        self.settlement_store = settlement_store

    def verify(self, presented_proof: Optional[str], presented_credential: Optional[str]) -> bool:
        """
        Verify a proof-of-payment against a previously issued credential.

        Args:
            presented_proof: Hex-encoded preimage from the Authorization header
            presented_credential: Token from the L402-Macaroon header

        Returns:
            True if the credential is known, its invoice is settled and the proof matches

        Raises:
            ChallengeRequired: If the credential is missing or the proof is absent
            BackendUnavailable: If settlement could not be checked
            BackendError: If the backend reported a failure
        """
        return self._verify(presented_proof, presented_credential) is not None

    def _verify(self, presented_proof: Optional[str], presented_credential: Optional[str]) -> Optional[str]:
        """Run the verification and return the payment hash it resolved, or None on failure."""
        if not presented_credential or presented_proof is None:
            raise ChallengeRequired()

        payment_hash = self.credential_store.get(presented_credential)
        if payment_hash is None:
            logger.warning(f"L402: Unknown or expired credential {_credential_hint(presented_credential)}")
            return None

        stored_proof = self.settlement_store.get(payment_hash)
        if stored_proof is None:
            stored_proof = self._check_settlement(payment_hash)
            if stored_proof is None:
                logger.info(f"L402: Payment {payment_hash} not settled yet")
                return None

        try:
            proof = bytes.fromhex(presented_proof)
        except ValueError:
            logger.warning(f"L402: Malformed proof-of-payment for payment {payment_hash}")
            return None

        if not hmac.compare_digest(stored_proof, proof):
            logger.warning(f"L402: Proof-of-payment mismatch for payment {payment_hash}")
            return None

        return payment_hash

    def authenticate(self, authorization: Optional[str], credential: Optional[str]) -> str:
        """
        Authenticate the L402 headers of a request.

        Returns:
            The payment hash the credential is bound to

        Raises:
            ChallengeRequired: If either header is missing
            InvalidScheme: If the Authorization scheme is not L402
            AuthenticationFailed: If verification fails
            BackendUnavailable: If settlement could not be checked
            BackendError: If the backend reported a failure
        """
        if not credential:
            raise ChallengeRequired()
        proof = parse_authorization(authorization)

        payment_hash = self._verify(proof, credential)
        if payment_hash is None:
            raise AuthenticationFailed()

        return payment_hash

    def _check_settlement(self, payment_hash: str) -> Optional[bytes]:
        """
        Ask the backend whether payment_hash is settled and cache the proof.

        Returns:
            The stored proof, or None if the invoice is still unpaid
        """
        try:
            settlement = self.backend.get_settlement(payment_hash)
        except L402Error as e:
            logger.error(f"L402: get_settlement failed for payment {payment_hash}: {e.error_code}: {e}")
            audit.log_backend_error("get_settlement", e.error_code, e.message, payment_hash=payment_hash)
            raise
        except Exception as e:
            logger.error(f"L402: Unexpected get_settlement failure for payment {payment_hash}: {e}", exc_info=True)
            audit.log_backend_error("get_settlement", BackendError.error_code, str(e), payment_hash=payment_hash)
            raise BackendError(f"Settlement lookup failed: {e}") from e

        if not settlement.settled:
            return None

        if not settlement.preimage:
            logger.error(f"L402: Backend reported payment {payment_hash} settled without a preimage")
            audit.log_backend_error(
                "get_settlement",
                BackendError.error_code,
                "settled without preimage",
                payment_hash=payment_hash
            )
            raise BackendError("Settled invoice is missing its preimage")

        if self.settlement_store.put(payment_hash, settlement.preimage):
            logger.info(f"L402: Payment {payment_hash} settled")
            audit.log_payment_settled(payment_hash)
        # A concurrent request may have recorded the proof first; that one wins
        return self.settlement_store.get(payment_hash) or settlement.preimage
