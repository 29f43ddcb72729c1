# app/core/config.py
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, field_validator  # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent / "data" / "sample_data.json"


class Settings(BaseSettings):
    PROJECT_NAME: str = "L402 Gateway"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Payment backend: "lnd" talks to a real node, "simulated" keeps invoices in memory
    L402_BACKEND: Literal["lnd", "simulated"] = "lnd"

    # LND REST connection
    LND_REST_URL: AnyHttpUrl = "https://localhost:8080"
    LND_MACAROON_HEX: Optional[str] = None
    LND_TLS_CERT_PATH: Optional[str] = None
    LND_TLS_VERIFY: bool = True
    LND_TIMEOUT_SECONDS: float = 10.0

    # Credential lifetime, 0 means credentials never expire
    L402_CREDENTIAL_TTL_SECONDS: int = 86400
    # Price of challenges issued by the middleware for protected endpoints
    L402_DEFAULT_PRICE_SATS: int = 100
    L402_INVOICE_MEMO: str = "L402 access"
    # Challenges per client IP per minute, 0 disables the limit
    L402_CHALLENGE_RATE_LIMIT: int = 30
    # Comma-separated IPs/CIDR ranges of reverse proxies allowed to set X-Forwarded-For
    L402_TRUSTED_PROXIES: str = ""

    L402_AUDIT_ENABLED: bool = True
    L402_AUDIT_LOG_PATH: str = "logs/l402_audit.jsonl"

    CATALOG_PATH: str = str(DEFAULT_CATALOG_PATH)

    @field_validator("LND_TIMEOUT_SECONDS")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("LND_TIMEOUT_SECONDS must be greater than zero")
        return v

    @field_validator("L402_CREDENTIAL_TTL_SECONDS", "L402_CHALLENGE_RATE_LIMIT")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("L402_DEFAULT_PRICE_SATS")
    @classmethod
    def price_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("L402_DEFAULT_PRICE_SATS must be greater than zero")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
