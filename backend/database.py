"""
MongoDB client for the quota API

MONGO_URL and DB_NAME come from the environment (or backend/.env). Both are
required; importing this module without them raises immediately so the
server never starts half-configured.
"""
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import Optional, Tuple
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv(Path(__file__).parent / '.env')

REQUIRED_ENV = {
    "MONGO_URL": "mongodb://localhost:27017",
    "DB_NAME": "map_bridge",
}


def _require_env() -> Tuple[str, str]:
    missing = [name for name in REQUIRED_ENV if not os.environ.get(name)]
    if missing:
        hints = ", ".join(f"{name} (e.g. {REQUIRED_ENV[name]})" for name in missing)
        raise ValueError(f"Quota API is missing required environment variables: {hints}. See .env.example.")
    return os.environ["MONGO_URL"], os.environ["DB_NAME"]


mongo_url, db_name = _require_env()

# Connects lazily; the first command opens the pool
client = AsyncIOMotorClient(
    mongo_url,
    maxPoolSize=50,
    connectTimeoutMS=5000,
    serverSelectionTimeoutMS=5000,
    retryWrites=True
)
db = client[db_name]


async def check_db_connection() -> Tuple[bool, Optional[str]]:
    """Ping the server; returns (ok, error_message)."""
    try:
        await client.admin.command('ping')
    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg

    logger.info(f"Database connected: {db_name}")
    return True, None
