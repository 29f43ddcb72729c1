# app/services/catalog.py
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from app.core.config import settings

logger = logging.getLogger(__name__)


class Product(BaseModel):
    """A resource that can be bought with an L402 payment."""
    id: Union[int, str]
    name: str
    price: int = Field(..., description="Price in satoshis")
    description: Optional[str] = None


class Catalog(BaseModel):
    products: List[Product] = Field(default_factory=list)
    protected_data: Dict[str, Any] = Field(default_factory=dict)

    def find_product(self, product_id: Union[int, str]) -> Optional[Product]:
        """Find a product by id; "1" and 1 refer to the same product."""
        for product in self.products:
            if str(product.id) == str(product_id):
                return product
        return None


def load_catalog(path: Union[str, Path]) -> Catalog:
    """
    Loads the product catalog and protected payload from a JSON file.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not valid JSON or does not match the catalog schema
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = json.load(f)
        catalog = Catalog.model_validate(data)
    except OSError as e:
        logger.error(f"Failed to read catalog file {path}: {e}")
        raise
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Invalid catalog file {path}: {e}")
        raise ValueError(f"Invalid catalog file {path}") from e

    logger.info(f"Loaded {len(catalog.products)} products from {path}")
    return catalog


@lru_cache()
def get_catalog() -> Catalog:
    return load_catalog(settings.CATALOG_PATH)
