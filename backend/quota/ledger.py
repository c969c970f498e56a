"""
Quota Ledger

One MongoDB document per normalized user id holding the remaining balance.

Operations:
- Pure reads (no provisioning)
- Lazy account creation guarded by a unique index on user_id
- Balance overwrite
- Atomic increment and decrement-if-positive

CRITICAL: balance changes never read and then write. Top-ups are a single $inc
and the decrement is a single conditional update, so the stored balance cannot
go negative, concurrent top-ups are never lost, and concurrent consumers cannot
both spend the last credit.

Keys are stored exactly as given; callers pass the normalized user id. The
ledger does not verify identity; callers authorize before writing.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import QUOTA_COLLECTION
from .models import QuotaAccount

logger = logging.getLogger(__name__)

_PROJECTION = {"_id": 0}


class LedgerError(Exception):
    """Storage failure; opaque to API callers."""


class AccountNotFoundError(Exception):
    """The operation needs an existing quota account and there is none."""

    def __init__(self, user_id: str):
        super().__init__(f"Quota record not found for {user_id}")
        self.user_id = user_id


class QuotaLedger:
    """Durable per-user balance store."""

    def __init__(self, db, collection_name: str = QUOTA_COLLECTION):
        self.db = db
        self.collection_name = collection_name

    @property
    def collection(self):
        return self.db[self.collection_name]

    async def ensure_indexes(self):
        """Create the unique user_id index that resolves creation races."""
        try:
            await self.collection.create_index(
                [("user_id", 1)], unique=True, name="idx_user_id_unique"
            )
        except PyMongoError as e:
            raise LedgerError(f"Failed to create quota indexes: {e}") from e

    async def get(self, user_id: str) -> Optional[QuotaAccount]:
        """Read an account without creating it."""
        try:
            doc = await self.collection.find_one({"user_id": user_id}, _PROJECTION)
        except PyMongoError as e:
            raise LedgerError(f"Failed to load quota for {user_id}: {e}") from e

        return QuotaAccount(**doc) if doc else None

    async def get_or_create(self, user_id: str, default_balance: int) -> QuotaAccount:
        """
        Get the account, creating it with default_balance if absent.

        Two first-time callers may both see no document; the unique index makes
        one insert fail, and the loser re-reads the winner's document.
        """
        existing = await self.get(user_id)
        if existing:
            return existing

        now = _now()
        doc = {
            "user_id": user_id,
            "balance": default_balance,
            "created_at": now,
            "updated_at": now,
        }

        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info(f"Quota account for {user_id} created concurrently, re-reading")
            account = await self.get(user_id)
            if account is None:
                raise LedgerError(f"Quota row for {user_id} missing after duplicate key conflict")
            return account
        except PyMongoError as e:
            raise LedgerError(f"Failed to create quota row for {user_id}: {e}") from e

        logger.info(f"Provisioned quota account for {user_id} with balance {default_balance}")
        return QuotaAccount(
            user_id=user_id,
            balance=default_balance,
            created_at=now,
            updated_at=now,
        )

    async def set_balance(self, user_id: str, new_balance: int) -> QuotaAccount:
        """
        Overwrite the balance of an existing account.

        Raises:
            AccountNotFoundError: no account for user_id
            LedgerError: negative balance or storage failure
        """
        if new_balance < 0:
            raise LedgerError(f"Refusing to store negative balance {new_balance} for {user_id}")

        doc = await self._find_one_and_update(
            user_id,
            {"user_id": user_id},
            {"$set": {"balance": new_balance, "updated_at": _now()}},
        )
        if not doc:
            raise AccountNotFoundError(user_id)
        return QuotaAccount(**doc)

    async def increment(self, user_id: str, amount: int) -> QuotaAccount:
        """
        Atomically add amount to the balance of an existing account.

        Raises:
            AccountNotFoundError: no account for user_id
            LedgerError: non-positive amount or storage failure
        """
        if amount <= 0:
            raise LedgerError(f"Refusing to increment {user_id} by {amount}")

        doc = await self._find_one_and_update(
            user_id,
            {"user_id": user_id},
            {"$inc": {"balance": amount}, "$set": {"updated_at": _now()}},
        )
        if not doc:
            raise AccountNotFoundError(user_id)
        return QuotaAccount(**doc)

    async def decrement_if_positive(self, user_id: str) -> Optional[QuotaAccount]:
        """
        Atomically take one credit.

        Returns the updated account, or None when no account with a positive
        balance matched (absent, or already at zero).
        """
        doc = await self._find_one_and_update(
            user_id,
            {"user_id": user_id, "balance": {"$gt": 0}},
            {"$inc": {"balance": -1}, "$set": {"updated_at": _now()}},
        )
        return QuotaAccount(**doc) if doc else None

    async def _find_one_and_update(self, user_id: str, query: dict, update: dict) -> Optional[dict]:
        try:
            return await self.collection.find_one_and_update(
                query,
                update,
                projection=_PROJECTION,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise LedgerError(f"Failed to update quota for {user_id}: {e}") from e


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
