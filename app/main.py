# app/main.py
from fastapi import FastAPI
from requests.exceptions import RequestException
from app.core.config import settings
from app.api.endpoints import access
from app.l402.middleware import L402Middleware
from app.services.lnd_api import get_info
import logging

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json"
)

# Guards the protected endpoints; everything else passes straight through
app.add_middleware(L402Middleware)

app.include_router(access.router, prefix=settings.API_PREFIX, tags=["l402"])

@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """
    Basic health check endpoint.

    With the LND backend the node is queried as well; an unreachable node
    reports status "degraded".
    """
    logger.info("Root endpoint '/' accessed.")
    health = {
        "status": "ok",
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "payment_backend": settings.L402_BACKEND,
    }
    if settings.L402_BACKEND == "lnd":
        try:
            info = get_info()
            health["lnd"] = {
                "alias": info.get("alias"),
                "synced_to_chain": info.get("synced_to_chain", False),
            }
        except (RequestException, ValueError) as e:
            logger.warning(f"LND health check failed: {e}")
            health["status"] = "degraded"
            health["lnd"] = None
    return health
