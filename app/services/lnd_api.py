# app/services/lnd_api.py
import base64
import binascii
import logging
import re
from typing import Any, Dict, Optional, Union

import requests
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from app.core.config import settings
from app.l402.backend import Invoice, PaymentBackend, Settlement
from app.l402.errors import BackendError, BackendUnavailable

logger = logging.getLogger(__name__)

HEX_HASH_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def _lnd_url(path: str) -> str:
    return f"{str(settings.LND_REST_URL).rstrip('/')}/{path.lstrip('/')}"


def _lnd_headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.LND_MACAROON_HEX:
        headers["Grpc-Metadata-Macaroon"] = settings.LND_MACAROON_HEX
    return headers


def _tls_verify() -> Union[bool, str]:
    """LND serves a self-signed certificate; point requests at it when configured."""
    if settings.LND_TLS_CERT_PATH:
        return settings.LND_TLS_CERT_PATH
    return settings.LND_TLS_VERIFY


def _get(path: str) -> Any:
    response = requests.get(
        _lnd_url(path),
        headers=_lnd_headers(),
        verify=_tls_verify(),
        timeout=settings.LND_TIMEOUT_SECONDS
    )
    response.raise_for_status()
    return response.json()


def _post(path: str, body: Dict[str, Any]) -> Any:
    response = requests.post(
        _lnd_url(path),
        json=body,
        headers=_lnd_headers(),
        verify=_tls_verify(),
        timeout=settings.LND_TIMEOUT_SECONDS
    )
    response.raise_for_status()
    return response.json()


def payment_hash_to_hex(r_hash: str) -> str:
    """
    Normalise an LND payment hash to lowercase hex.

    LND's REST API returns `r_hash` base64-encoded but expects hex in URL paths.

    Raises:
        ValueError: If the value is neither 64 hex chars nor base64 of 32 bytes
    """
    if HEX_HASH_RE.match(r_hash):
        return r_hash.lower()
    try:
        raw = base64.b64decode(r_hash, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError(f"Payment hash is neither hex nor base64: {r_hash!r}")
    if len(raw) != 32:
        raise ValueError(f"Payment hash must be 32 bytes, got {len(raw)}")
    return raw.hex()


def decode_preimage(r_preimage: str) -> bytes:
    """Decode the base64 `r_preimage` LND returns for settled invoices."""
    try:
        return base64.b64decode(r_preimage, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Invoice preimage is not valid base64")


def get_info() -> Dict[str, Any]:
    """
    Fetches node information (alias, pubkey, sync state) from LND.

    Raises:
        RequestException: If the HTTP request to LND fails
    """
    try:
        info = _get("/v1/getinfo")
        logger.info(f"LND node info fetched: alias={info.get('alias')}, synced={info.get('synced_to_chain')}")
        return info
    except RequestException as e:
        logger.error(f"Error fetching LND info: {e}")
        raise


def add_invoice(amount_sats: int, memo: Optional[str] = None) -> Dict[str, Any]:
    """
    Creates an invoice on the LND node.

    Args:
        amount_sats: Invoice value in satoshis
        memo: Optional invoice description

    Returns:
        The raw LND response (`r_hash`, `payment_request`, `add_index`, ...)

    Raises:
        RequestException: If the HTTP request to LND fails
        ValueError: If the response is missing `r_hash` or `payment_request`
    """
    body: Dict[str, Any] = {"value": str(amount_sats)}
    if memo:
        body["memo"] = memo

    try:
        data = _post("/v1/invoices", body)
    except RequestException as e:
        logger.error(f"Error creating invoice for {amount_sats} sats: {e}")
        raise

    if not isinstance(data, dict) or not data.get("r_hash") or not data.get("payment_request"):
        raise ValueError("LND response missing 'r_hash' or 'payment_request'")

    logger.debug(f"LND invoice created (add_index={data.get('add_index')})")
    return data


def lookup_invoice(payment_hash: str) -> Dict[str, Any]:
    """
    Looks up a single invoice by payment hash.

    Args:
        payment_hash: Payment hash, hex or base64

    Raises:
        RequestException: If the HTTP request to LND fails
        ValueError: If the payment hash or the response is malformed
    """
    hex_hash = payment_hash_to_hex(payment_hash)
    try:
        data = _get(f"/v1/invoice/{hex_hash}")
    except RequestException as e:
        logger.error(f"Error looking up invoice {hex_hash}: {e}")
        raise

    if not isinstance(data, dict):
        raise ValueError(f"Unexpected invoice structure from LND: {type(data)}")
    return data


def is_invoice_settled(invoice: Dict[str, Any]) -> bool:
    # `settled` is deprecated in newer LND releases in favour of `state`
    return invoice.get("settled") is True or invoice.get("state") == "SETTLED"


class LndPaymentBackend(PaymentBackend):
    """
    Payment backend backed by the LND REST API.

    Transport failures (connection refused, timeouts, TLS errors) become
    BackendUnavailable; error statuses and malformed payloads become BackendError.
    """

    def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        try:
            data = add_invoice(amount_sats, memo)
            return Invoice(
                payment_hash=payment_hash_to_hex(data["r_hash"]),
                payment_request=data["payment_request"],
            )
        except (HTTPError, ValueError) as e:
            raise BackendError(f"LND rejected invoice creation: {e}") from e
        except (ConnectionError, Timeout, RequestException) as e:
            raise BackendUnavailable(f"LND unreachable during invoice creation: {e}") from e

    def get_settlement(self, payment_hash: str) -> Settlement:
        try:
            invoice = lookup_invoice(payment_hash)
            if not is_invoice_settled(invoice):
                return Settlement(settled=False)
            r_preimage = invoice.get("r_preimage")
            preimage = decode_preimage(r_preimage) if r_preimage else None
            return Settlement(settled=True, preimage=preimage)
        except (HTTPError, ValueError) as e:
            raise BackendError(f"LND invoice lookup failed: {e}") from e
        except (ConnectionError, Timeout, RequestException) as e:
            raise BackendUnavailable(f"LND unreachable during invoice lookup: {e}") from e
