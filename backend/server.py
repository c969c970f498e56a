from quota.routes import quota_router
from quota.config import QuotaSettings
from quota.identity import IdentityVerifier
from quota.ledger import QuotaLedger
from quota.service import QuotaService
from database import client, db, check_db_connection
from fastapi import FastAPI, APIRouter
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from datetime import datetime, timezone

# Create the main app
app = FastAPI(title="Map Bridge - Usage Quota API")

api_router = APIRouter(prefix="/api")


def build_quota_service(database, settings: QuotaSettings) -> QuotaService:
    """Wire the quota service from process-wide settings."""
    ledger = QuotaLedger(database, settings.collection_name)
    verifier = IdentityVerifier(settings.userinfo_url, settings.identity_timeout_seconds)
    return QuotaService(ledger, verifier, settings.default_balance)


@api_router.get("/health")
async def health():
    db_ok, _ = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "unavailable",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


api_router.include_router(quota_router)

app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=[origin.strip() for origin in os.environ.get(
        'CORS_ORIGINS', '*').split(',')],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def startup():
    # Check database connection first - fail fast if database is unavailable
    db_ok, db_error = await check_db_connection()
    if not db_ok:
        logger.critical(f"Database connection failed on startup: {db_error}")
        raise RuntimeError(
            f"Cannot start application - database connection failed: {db_error}")

    settings = QuotaSettings.from_env()
    service = build_quota_service(db, settings)

    # Unique user_id index resolves concurrent first-time provisioning
    await service.ledger.ensure_indexes()

    app.state.quota_service = service
    logger.info(
        f"Quota service ready (collection={settings.collection_name}, "
        f"default_balance={settings.default_balance}, userinfo={settings.userinfo_url})"
    )


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
