"""
Quota Database Initialization Script

Rules:
1. Environment Guard - APP_ENV=production requires QUOTA_INIT_CONFIRM=YES
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Lazy account creation - quota rows are created on first use, not here
5. Safe index creation - handles "index already exists" gracefully
6. Dry-run mode - --dry-run prints what it would do
7. Version stamp - tracks init version

Usage:
    CLI one-off: python -m quota.db_init
    With dry-run: python -m quota.db_init --dry-run
    In production: APP_ENV=production QUOTA_INIT_CONFIRM=YES python -m quota.db_init
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Tuple

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import CollectionInvalid, OperationFailure

from .config import QUOTA_META_COLLECTION, QuotaSettings

logger = logging.getLogger(__name__)

# Version tracking
INIT_VERSION = "v1.0.0"


def required_collections(settings: QuotaSettings) -> List[str]:
    return [settings.collection_name, QUOTA_META_COLLECTION]


def required_indexes(settings: QuotaSettings) -> List[Tuple[str, list, dict]]:
    """Index definitions: (collection, index_spec, options)"""
    return [
        (settings.collection_name, [("user_id", 1)], {"unique": True, "name": "idx_user_id_unique"}),
    ]


def check_environment() -> Tuple[bool, str]:
    """
    Check environment and confirm if production execution is allowed.

    Returns:
        Tuple of (allowed, message)
    """
    app_env = os.environ.get("APP_ENV", os.environ.get("ENVIRONMENT", "development"))

    if app_env.lower() == "production":
        confirm = os.environ.get("QUOTA_INIT_CONFIRM", "")
        if confirm != "YES":
            return False, (
                "PRODUCTION ENVIRONMENT DETECTED!\n"
                "To run init in production, set: QUOTA_INIT_CONFIRM=YES\n"
                "Current value: QUOTA_INIT_CONFIRM='%s'" % confirm
            )

    return True, f"Environment: {app_env}"


async def create_collection_if_not_exists(db, collection_name: str, dry_run: bool = False) -> str:
    """Create a collection if it doesn't exist."""
    existing = await db.list_collection_names()

    if collection_name in existing:
        return f"  [SKIP] Collection '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create collection '{collection_name}'"

    try:
        await db.create_collection(collection_name)
        return f"  [CREATE] Created collection '{collection_name}'"
    except CollectionInvalid:
        return f"  [SKIP] Collection '{collection_name}' already exists (race)"


async def create_index_if_not_exists(
    db,
    collection_name: str,
    index_spec: List[Tuple],
    options: dict,
    dry_run: bool = False
) -> str:
    """Create an index if it doesn't exist."""
    collection = db[collection_name]
    index_name = options.get("name", str(index_spec))

    existing_indexes = await collection.index_information()

    if index_name in existing_indexes:
        return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists"

    if dry_run:
        return f"  [DRY-RUN] Would create index '{index_name}' on '{collection_name}'"

    try:
        await collection.create_index(index_spec, **options)
        return f"  [CREATE] Created index '{index_name}' on '{collection_name}'"
    except OperationFailure as e:
        if "already exists" in str(e).lower():
            return f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists (race)"
        raise


async def update_version_stamp(db, dry_run: bool = False) -> str:
    """Update or create version stamp document."""
    if dry_run:
        return f"  [DRY-RUN] Would update version stamp to {INIT_VERSION}"

    await db[QUOTA_META_COLLECTION].update_one(
        {"_id": "quota_init"},
        {
            "$set": {
                "version": INIT_VERSION,
                "applied_at": datetime.now(timezone.utc).isoformat()
            }
        },
        upsert=True
    )
    return f"  [UPDATE] Version stamp updated to {INIT_VERSION}"


async def apply(db, settings: QuotaSettings, dry_run: bool = False) -> List[str]:
    """Create collections, indexes and the version stamp; returns the log lines."""
    results = []
    for collection_name in required_collections(settings):
        results.append(await create_collection_if_not_exists(db, collection_name, dry_run))
    for collection_name, index_spec, options in required_indexes(settings):
        results.append(await create_index_if_not_exists(db, collection_name, index_spec, options, dry_run))
    results.append(await update_version_stamp(db, dry_run))
    return results


async def run_init(dry_run: bool = False):
    """Run the database initialization."""
    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / '.env'
    load_dotenv(env_path)

    allowed, env_message = check_environment()
    logger.info(env_message)

    if not allowed:
        logger.error("Init blocked due to environment guard")
        sys.exit(1)

    mongo_url = os.environ.get('MONGO_URL')
    db_name = os.environ.get('DB_NAME')

    if not mongo_url or not db_name:
        logger.error("Missing MONGO_URL or DB_NAME environment variables")
        sys.exit(1)

    settings = QuotaSettings.from_env()

    logger.info(f"Database: {db_name}")
    logger.info(f"Quota collection: {settings.collection_name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection: OK")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        client.close()
        sys.exit(1)

    try:
        for line in await apply(db, settings, dry_run):
            logger.info(line)
    finally:
        client.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Quota DB init completed")
    logger.info("=" * 50)


def main():
    """Main entry point."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="Quota Database Initialization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Development (default)
    python -m quota.db_init

    # Dry run (no changes)
    python -m quota.db_init --dry-run

    # Production
    APP_ENV=production QUOTA_INIT_CONFIRM=YES python -m quota.db_init
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
