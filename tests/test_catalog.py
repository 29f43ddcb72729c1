# tests/test_catalog.py
import json
import pytest

from app.core.config import DEFAULT_CATALOG_PATH
from app.services.catalog import Catalog, Product, load_catalog


class TestCatalog:

    def test_bundled_catalog_loads(self):
        """The bundled sample catalog loads and validates."""
        catalog = load_catalog(DEFAULT_CATALOG_PATH)

        assert len(catalog.products) == 3
        assert catalog.protected_data["title"] == "Premium content"

    def test_find_product_by_int_or_str(self):
        """Products are found by integer or string id."""
        catalog = Catalog(products=[Product(id=7, name="Report", price=1000)])

        assert catalog.find_product(7).name == "Report"
        assert catalog.find_product("7").name == "Report"
        assert catalog.find_product(8) is None

    def test_missing_file(self, tmp_path):
        """A missing catalog file raises OSError."""
        with pytest.raises(OSError):
            load_catalog(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        """Malformed JSON is reported as ValueError."""
        path = tmp_path / "catalog.json"
        path.write_text("{not json")

        with pytest.raises(ValueError):
            load_catalog(path)

    def test_invalid_schema(self, tmp_path):
        """A catalog that does not match the schema is reported as ValueError."""
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps({"products": [{"id": 1, "name": "x", "price": "lots"}]}))

        with pytest.raises(ValueError):
            load_catalog(path)
