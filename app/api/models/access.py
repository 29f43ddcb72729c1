# app/api/models/access.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union


class AccessRequest(BaseModel):
    """Request body for obtaining an L402 challenge for a product."""
    productId: Union[int, str] = Field(..., description="Catalog id of the product to buy", example=1)


class ChallengeResponse(BaseModel):
    """Body of a 402 response; the same values are also sent as headers."""
    message: str = Field(..., example="Payment required")
    headers: Dict[str, str] = Field(
        ...,
        description="WWW-Authenticate, L402-Invoice and L402-Macaroon header values"
    )


class ErrorResponse(BaseModel):
    message: str
    error: Optional[str] = None


class ProductResponse(BaseModel):
    id: Union[int, str]
    name: str
    price: int = Field(..., description="Price in satoshis")
    description: Optional[str] = None


class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total_count: int


class ProtectedDataResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]
