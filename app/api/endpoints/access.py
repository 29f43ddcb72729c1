# app/api/endpoints/access.py
from fastapi import APIRouter, HTTPException, Request, status
from typing import Any
import logging

from app.api.models.access import (
    AccessRequest,
    ChallengeResponse,
    ErrorResponse,
    ProductListResponse,
    ProductResponse,
    ProtectedDataResponse,
)
from app.l402.middleware import get_client_ip, issue_challenge_response
from app.l402.service import get_l402_service
from app.services.catalog import Catalog, get_catalog

router = APIRouter()
logger = logging.getLogger(__name__)


def _load_catalog() -> Catalog:
    try:
        return get_catalog()
    except (OSError, ValueError) as e:
        logger.error(f"Product catalog unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Product catalog unavailable"
        )


@router.get(
    "/products",
    response_model=ProductListResponse,
    summary="List Purchasable Products"
)
def list_products() -> Any:
    """
    Lists the products that can be unlocked with an L402 payment, with prices in satoshis.
    """
    catalog = _load_catalog()
    products = [ProductResponse(**product.model_dump()) for product in catalog.products]
    return ProductListResponse(products=products, total_count=len(products))


@router.post(
    "/request-access",
    status_code=status.HTTP_402_PAYMENT_REQUIRED,
    response_model=ChallengeResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown product"},
        429: {"model": ErrorResponse, "description": "Too many challenges requested"},
        500: {"model": ErrorResponse, "description": "Payment backend or internal failure"},
    },
    summary="Request an L402 Payment Challenge"
)
async def request_access(body: AccessRequest, request: Request) -> Any:
    """
    Issues an L402 challenge for a product.

    Creates a Lightning invoice for the product's price and a credential bound
    to it. The client pays the invoice, then calls the protected endpoint with
    `Authorization: L402 <preimage hex>` and `L402-Macaroon: <credential>`.

    Returns:
        402 with `WWW-Authenticate`, `L402-Invoice` and `L402-Macaroon` headers

    Raises:
        HTTPException: 404 if the product does not exist
    """
    catalog = _load_catalog()
    product = catalog.find_product(body.productId)
    if product is None:
        logger.info(f"Access requested for unknown product {body.productId}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    return await issue_challenge_response(
        get_l402_service(),
        product.price,
        get_client_ip(request),
        resource=f"product:{product.id}",
        memo=f"L402 access: {product.name}",
        message="Payment required"
    )


@router.get(
    "/protected-data",
    response_model=ProtectedDataResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid scheme or credentials"},
        402: {"model": ChallengeResponse, "description": "Payment required"},
        500: {"model": ErrorResponse, "description": "Payment backend or internal failure"},
    },
    summary="Fetch L402-Protected Data"
)
def get_protected_data() -> Any:
    """
    Returns the protected payload. Guarded by the L402 middleware, so this only
    runs for requests carrying a paid credential and matching proof-of-payment.
    """
    catalog = _load_catalog()
    return ProtectedDataResponse(success=True, data=catalog.protected_data)
