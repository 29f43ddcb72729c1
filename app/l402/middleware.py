# app/l402/middleware.py
"""
FastAPI middleware for L402 payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Answers requests without L402 credentials with a fresh 402 challenge
3. Verifies `Authorization: L402 <preimage>` + `L402-Macaroon` pairs
4. Returns 401 for bad credentials and 500 when the payment backend fails

The engine is synchronous, so verification runs in the threadpool. A backend
lookup that is in flight when the client disconnects still completes and
fills the settlement cache.
"""
import logging
from typing import Callable, List, Optional, Tuple

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.l402 import audit
from app.l402.challenge import Challenge, L402_MACAROON_HEADER
from app.l402.errors import ChallengeRequired, InternalError, L402Error
from app.l402.proxies import get_trusted_proxies, ip_matches_list
from app.l402.ratelimit import check_challenge_rate_limit, get_rate_limit_headers
from app.l402.service import L402Service, get_l402_service

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"

# Protected endpoints configuration
PROTECTED_ENDPOINTS: List[Tuple[str, str]] = [
    ("GET", f"{settings.API_PREFIX}/protected-data"),
]


def is_protected_endpoint(method: str, path: str) -> bool:
    """Check if the request matches a protected endpoint."""
    for protected_method, protected_path in PROTECTED_ENDPOINTS:
        if method == protected_method and path.rstrip("/") == protected_path.rstrip("/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request, handling trusted proxies.

    Forwarding headers are only read when the connecting peer is a trusted
    proxy. The X-Forwarded-For chain is walked from the right and the first
    hop that is not itself a trusted proxy is the client.
    """
    peer_ip = request.client.host if request.client else "unknown"
    trusted = get_trusted_proxies()
    if not ip_matches_list(peer_ip, trusted):
        return peer_ip

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not ip_matches_list(hop, trusted):
                return hop
        if hops:
            return hops[0]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return peer_ip


def create_402_response(challenge: Challenge, message: str = "Payment Required") -> JSONResponse:
    """
    Create an HTTP 402 response carrying an L402 challenge.

    The challenge is sent as real headers and mirrored in the body for
    clients that cannot read custom response headers.
    """
    headers = challenge.to_headers()
    return JSONResponse(
        status_code=402,
        content={
            "message": message,
            "headers": headers,
        },
        headers=headers
    )


def create_error_response(error: L402Error, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"message": error.message, "error": error.error_code},
        headers=headers
    )


def create_rate_limited_response(stats: dict) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "message": "Too many payment challenges requested, try again later",
            "error": "rate_limited",
        },
        headers=get_rate_limit_headers(stats)
    )


async def issue_challenge_response(
    service: L402Service,
    amount_sats: int,
    client_ip: str,
    resource: str,
    memo: Optional[str] = None,
    message: str = "Payment Required"
) -> Response:
    """
    Rate-limit, issue a challenge and render it as a 402 response.

    Shared by the middleware and the request-access endpoint.
    """
    is_allowed, stats = check_challenge_rate_limit(client_ip)
    if not is_allowed:
        audit.log_rate_limited(client_ip, stats["requests_made"], stats["limit"])
        return create_rate_limited_response(stats)

    try:
        challenge = await run_in_threadpool(
            service.issuer.issue_challenge,
            amount_sats,
            memo,
            resource,
            client_ip
        )
    except L402Error as e:
        return create_error_response(e)

    return create_402_response(challenge, message=message)


class L402Middleware(BaseHTTPMiddleware):
    """
    L402 payment verification middleware for FastAPI.

    For protected endpoints:
    - No credentials: respond 402 with a challenge priced at L402_DEFAULT_PRICE_SATS
    - Wrong scheme or bad credentials: respond 401
    - Payment backend failure: respond 500 with a distinct error code
    - Valid credentials: pass the request through

    The payment hash of an authenticated request is exposed as
    `request.state.l402_payment_hash`.
    """

    def __init__(self, app, service: Optional[L402Service] = None):
        super().__init__(app)
        self._service = service

    @property
    def service(self) -> L402Service:
        """Use the injected service, or the process-wide one."""
        if self._service is not None:
            return self._service
        return get_l402_service()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        path = request.url.path
        if not is_protected_endpoint(request.method, path):
            return await call_next(request)

        client_ip = get_client_ip(request)
        authorization = request.headers.get(AUTHORIZATION_HEADER)
        credential = request.headers.get(L402_MACAROON_HEADER)
        service = self.service

        try:
            payment_hash = await run_in_threadpool(
                service.verifier.authenticate,
                authorization,
                credential
            )
        except ChallengeRequired:
            logger.info(f"L402: Missing credentials from {client_ip} for {path}, issuing challenge")
            return await issue_challenge_response(
                service,
                settings.L402_DEFAULT_PRICE_SATS,
                client_ip,
                resource=path
            )
        except L402Error as e:
            if e.status_code >= 500:
                # Backend failures are audited by the verifier; the client may retry
                logger.error(f"L402: Could not verify request from {client_ip} for {path}: {e.error_code}")
            else:
                logger.warning(f"L402: Request from {client_ip} for {path} rejected: {e.error_code}")
                audit.log_access_denied(client_ip, e.error_code, path)
            return create_error_response(e)
        except Exception as e:
            logger.error(f"L402: Unexpected verification error for {path}: {e}", exc_info=True)
            audit.log_error(type(e).__name__, str(e), {"path": path}, client_ip=client_ip)
            return create_error_response(InternalError())

        logger.info(f"L402: Access granted to {client_ip} for {path} (payment_hash={payment_hash})")
        audit.log_access_granted(client_ip, payment_hash, path)
        request.state.l402_payment_hash = payment_hash
        return await call_next(request)
