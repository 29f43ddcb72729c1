# app/l402/errors.py
"""
Exception taxonomy for the L402 engine.

Every error carries the HTTP status and a short machine-readable code so the
middleware and endpoints can turn it into a response without a lookup table.
"""
from typing import Optional


class L402Error(Exception):
    """Base class for all L402 protocol and backend failures."""
    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ChallengeRequired(L402Error):
    """Credentials are missing; the client must obtain a challenge first."""
    status_code = 402
    error_code = "challenge_required"
    default_message = "Payment Required"


class InvalidScheme(L402Error):
    """The Authorization header does not use the L402 scheme."""
    status_code = 401
    error_code = "invalid_scheme"
    default_message = "Invalid authorization scheme"


class AuthenticationFailed(L402Error):
    """Credential unknown, invoice unpaid, or proof-of-payment mismatch."""
    status_code = 401
    error_code = "authentication_failed"
    default_message = "Invalid L402 credentials"


class BackendUnavailable(L402Error):
    """The payment backend could not be reached or timed out."""
    status_code = 500
    error_code = "backend_unavailable"
    default_message = "Payment backend unavailable"


class BackendError(L402Error):
    """The payment backend answered, but with an error or a malformed payload."""
    status_code = 500
    error_code = "backend_error"
    default_message = "Payment backend error"


class InvalidAmount(L402Error, ValueError):
    """Invoice amount is not a positive whole number of satoshis."""
    status_code = 500
    error_code = "invalid_amount"
    default_message = "Invalid payment amount"


class InternalError(L402Error):
    status_code = 500
    error_code = "internal_error"
    default_message = "Internal server error"
