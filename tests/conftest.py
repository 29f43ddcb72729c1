# tests/conftest.py
import os
import tempfile

# Must run before app.core.config is imported anywhere
os.environ["L402_BACKEND"] = "simulated"
os.environ["L402_AUDIT_LOG_PATH"] = os.path.join(
    tempfile.mkdtemp(prefix="l402-audit-"), "l402_audit.jsonl"
)

import pytest

from app.l402.ratelimit import reset_rate_limiter
from app.l402.service import L402Service, reset_l402_service
from app.l402.simulator import SimulatedPaymentBackend


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return SimulatedPaymentBackend()


@pytest.fixture
def service(backend):
    return L402Service(backend=backend, invoice_memo="test memo")


@pytest.fixture(autouse=True)
def reset_global_state():
    """Every test starts with a fresh rate limiter and L402 service."""
    reset_rate_limiter()
    reset_l402_service()
    yield
    reset_rate_limiter()
    reset_l402_service()
