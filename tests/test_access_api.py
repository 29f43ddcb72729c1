# tests/test_access_api.py
import pytest
import requests
from unittest.mock import patch
from fastapi.testclient import TestClient

import app.main as main_module
from app.main import app
from app.l402.audit import get_audit_log_path
from app.l402.service import set_l402_service
from app.services.catalog import Catalog

client = TestClient(app)


@pytest.fixture(autouse=True)
def installed_service(service):
    """Route the application through the test's simulated backend."""
    set_l402_service(service)
    return service


def _payment_hash(response) -> str:
    return response.headers["WWW-Authenticate"].split('"')[1]


class TestAccessAPI:
    """Test suite for the L402 access endpoints."""

    def test_health_check(self):
        """Health check reports the simulated backend without contacting LND."""
        with patch("app.main.get_info") as mock_get_info:
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["payment_backend"] == "simulated"
        mock_get_info.assert_not_called()

    @patch("app.main.get_info")
    def test_health_check_lnd(self, mock_get_info):
        """With the LND backend the node alias and sync state are reported."""
        mock_get_info.return_value = {"alias": "gateway", "synced_to_chain": True, "identity_pubkey": "02ab"}

        with patch.object(main_module.settings, "L402_BACKEND", "lnd"):
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["lnd"] == {"alias": "gateway", "synced_to_chain": True}

    @patch("app.main.get_info")
    def test_health_check_lnd_unreachable(self, mock_get_info):
        """An unreachable LND node degrades the health status instead of failing."""
        mock_get_info.side_effect = requests.exceptions.ConnectionError("refused")

        with patch.object(main_module.settings, "L402_BACKEND", "lnd"):
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["lnd"] is None

    def test_list_products(self):
        """The product list includes every catalog entry with a positive price."""
        response = client.get("/api/products")

        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] == len(data["products"]) == 3
        assert all(product["price"] > 0 for product in data["products"])

    def test_request_access(self, backend):
        """Requesting access returns a 402 challenge priced from the catalog."""
        response = client.post("/api/request-access", json={"productId": 1})

        assert response.status_code == 402
        body = response.json()
        assert body["message"] == "Payment required"
        for header in ("WWW-Authenticate", "L402-Invoice", "L402-Macaroon"):
            assert body["headers"][header] == response.headers[header]

        invoice = backend.get_invoice(_payment_hash(response))
        assert invoice.amount_sats == 1000
        assert invoice.memo == "L402 access: Lightning Network Research Report"

    def test_request_access_string_product_id(self):
        """Product ids may be sent as strings."""
        response = client.post("/api/request-access", json={"productId": "2"})
        assert response.status_code == 402

    def test_request_access_unknown_product(self):
        """Unknown products return 404."""
        response = client.post("/api/request-access", json={"productId": 999})
        assert response.status_code == 404
        assert response.json()["detail"] == "Product not found"

    def test_request_access_missing_body(self):
        """A request without productId fails validation."""
        response = client.post("/api/request-access", json={})
        assert response.status_code == 422

    def test_request_access_backend_down(self, backend):
        """A payment backend outage returns 500 backend_unavailable."""
        backend.available = False

        response = client.post("/api/request-access", json={"productId": 1})

        assert response.status_code == 500
        assert response.json()["error"] == "backend_unavailable"

    @patch("app.api.endpoints.access.get_catalog")
    def test_catalog_unavailable(self, mock_catalog):
        """An unreadable catalog returns 500."""
        mock_catalog.side_effect = OSError("missing file")

        response = client.post("/api/request-access", json={"productId": 1})

        assert response.status_code == 500
        assert response.json()["detail"] == "Product catalog unavailable"

    @patch("app.api.endpoints.access.get_catalog")
    def test_invalid_product_price(self, mock_catalog):
        """A catalog price that is not positive is refused as invalid_amount."""
        mock_catalog.return_value = Catalog.model_validate(
            {"products": [{"id": 1, "name": "Free lunch", "price": 0}]}
        )

        response = client.post("/api/request-access", json={"productId": 1})

        assert response.status_code == 500
        assert response.json()["error"] == "invalid_amount"

    def test_protected_data_requires_payment(self, backend):
        """The protected endpoint answers unauthenticated requests with 402."""
        response = client.get("/api/protected-data")

        assert response.status_code == 402
        assert backend.get_invoice(_payment_hash(response)).amount_sats == 100


class TestL402Flow:
    """End-to-end: request access, pay, fetch the protected data."""

    def test_full_flow(self, backend):
        """Request access, pay the invoice and fetch the protected data."""
        challenge = client.post("/api/request-access", json={"productId": 1})
        credential = challenge.headers["L402-Macaroon"]
        payment_hash = _payment_hash(challenge)

        # Not paid yet
        response = client.get(
            "/api/protected-data",
            headers={"Authorization": "L402", "L402-Macaroon": credential}
        )
        assert response.status_code == 401

        preimage = backend.settle(payment_hash)
        headers = {"Authorization": f"L402 {preimage.hex()}", "L402-Macaroon": credential}

        response = client.get("/api/protected-data", headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["title"] == "Premium content"

        # Credentials stay valid for repeated use
        assert client.get("/api/protected-data", headers=headers).status_code == 200

        response = client.get(
            "/api/protected-data",
            headers={"Authorization": "L402 " + "00" * 32, "L402-Macaroon": credential}
        )
        assert response.status_code == 401

    def test_preimage_never_written_to_audit_log(self, backend):
        """Preimages never appear in the audit log."""
        challenge = client.post("/api/request-access", json={"productId": 2})
        preimage = backend.settle(_payment_hash(challenge))

        response = client.get(
            "/api/protected-data",
            headers={"Authorization": f"L402 {preimage.hex()}", "L402-Macaroon": challenge.headers["L402-Macaroon"]}
        )
        assert response.status_code == 200

        log_text = get_audit_log_path().read_text()
        assert _payment_hash(challenge) in log_text
        assert preimage.hex() not in log_text
