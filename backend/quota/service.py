"""
Quota Service

Composes the identity verifier and the ledger into the three caller-facing
operations: balance check, credit top-up and single-credit consumption.

Authorization policy:
- Reading an existing account never requires a credential
- Any write that provisions or changes an account requires a credential
  verified against the target user id, checked before the write
- Consuming from an account already at zero is a no-op and needs no credential
"""

import logging
import math
from numbers import Number
from typing import Any, Optional

from .config import DEFAULT_QUOTA, ERROR_MESSAGES, MAX_CREDITS_PER_TOP_UP
from .identity import IdentityVerifier, UnauthorizedError, normalize_user_id
from .ledger import AccountNotFoundError, LedgerError, QuotaLedger
from .models import ConsumeResult, QuotaAccount

logger = logging.getLogger(__name__)


class QuotaValidationError(Exception):
    """Bad or missing input; raised before any ledger access."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class QuotaServiceError(Exception):
    """Internal failure (storage or exhausted write retries)."""


def validate_user_id(user_id: Any) -> str:
    """Return the normalized user id or raise QuotaValidationError."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise QuotaValidationError(ERROR_MESSAGES["USER_ID_REQUIRED"])
    return normalize_user_id(user_id)


def validate_credits(credits: Any) -> int:
    """
    Accept only finite, positive, whole numbers of credits up to
    MAX_CREDITS_PER_TOP_UP.

    Fractional amounts are rejected rather than rounded.
    """
    if isinstance(credits, bool) or not isinstance(credits, Number):
        raise QuotaValidationError(ERROR_MESSAGES["CREDITS_INVALID"])
    if isinstance(credits, float) and (not math.isfinite(credits) or not credits.is_integer()):
        raise QuotaValidationError(ERROR_MESSAGES["CREDITS_INVALID"])
    try:
        value = int(credits)
    except (TypeError, ValueError):
        raise QuotaValidationError(ERROR_MESSAGES["CREDITS_INVALID"])
    if value != credits or value <= 0:
        raise QuotaValidationError(ERROR_MESSAGES["CREDITS_INVALID"])
    if value > MAX_CREDITS_PER_TOP_UP:
        raise QuotaValidationError(ERROR_MESSAGES["CREDITS_TOO_LARGE"])
    return value


class QuotaService:
    """Authorization and consistency rules for quota operations."""

    def __init__(
        self,
        ledger: QuotaLedger,
        verifier: IdentityVerifier,
        default_balance: int = DEFAULT_QUOTA,
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.default_balance = default_balance

    async def get_own_balance(self, credential: Optional[str]) -> QuotaAccount:
        """
        Balance of the credential holder, for callers that send no userId.

        The identity comes from the provider profile (email, else subject), so
        resolving it is the verification; a first call provisions the account.
        """
        key = await self.verifier.resolve_identity(credential)
        try:
            return await self.ledger.get_or_create(key, self.default_balance)
        except LedgerError as e:
            logger.error(f"Quota load failed for {key}: {e}")
            raise QuotaServiceError(ERROR_MESSAGES["LOAD_FAILED"]) from e

    async def get_balance(self, user_id: Any, credential: Optional[str] = None) -> QuotaAccount:
        """
        Current balance for user_id.

        Existing accounts are read without verification. An unknown user is
        provisioned with the default balance only when the credential verifies
        as that user.
        """
        key = validate_user_id(user_id)

        try:
            account = await self.ledger.get(key)
            if account:
                return account

            if not credential:
                logger.info(f"Refusing to provision {key} without a credential")
                raise UnauthorizedError(ERROR_MESSAGES["MISSING_AUTH"])

            await self.verifier.verify(credential, key)
            return await self.ledger.get_or_create(key, self.default_balance)
        except LedgerError as e:
            logger.error(f"Quota load failed for {key}: {e}")
            raise QuotaServiceError(ERROR_MESSAGES["LOAD_FAILED"]) from e

    async def add_credits(self, user_id: Any, credits: Any, credential: Optional[str]) -> QuotaAccount:
        """
        Add credits to user_id's balance.

        The account is provisioned first if it does not exist yet, then the
        credits are added with a single atomic increment.
        """
        key = validate_user_id(user_id)
        amount = validate_credits(credits)

        if not credential:
            raise UnauthorizedError(ERROR_MESSAGES["MISSING_AUTH"])
        await self.verifier.verify(credential, key)

        try:
            await self.ledger.get_or_create(key, self.default_balance)
            account = await self.ledger.increment(key, amount)
        except LedgerError as e:
            logger.error(f"Quota top-up failed for {key}: {e}")
            raise QuotaServiceError(ERROR_MESSAGES["ADD_FAILED"]) from e

        logger.info(f"Added {amount} credits to {key} (balance={account.balance})")
        return account

    async def consume_credit(self, user_id: Any, credential: Optional[str] = None) -> ConsumeResult:
        """
        Take one credit from user_id.

        Flow:
            no account -> provision if the credential verifies, else fail
            balance 0  -> no-op, no credential required
            otherwise  -> verify, then atomic decrement
        """
        key = validate_user_id(user_id)
        verified = False

        try:
            account = await self.ledger.get(key)

            if account is None:
                if not credential:
                    raise AccountNotFoundError(key)
                await self.verifier.verify(credential, key)
                verified = True
                account = await self.ledger.get_or_create(key, self.default_balance)

            if account.balance <= 0:
                return ConsumeResult(account=account, consumed=False)

            if not verified:
                if not credential:
                    raise UnauthorizedError(ERROR_MESSAGES["MISSING_AUTH"])
                await self.verifier.verify(credential, key)

            updated = await self.ledger.decrement_if_positive(key)
            if updated:
                return ConsumeResult(account=updated, consumed=True)

            # Drained by a concurrent consumer between the read and the update
            current = await self.ledger.get(key)
            if current is None:
                raise AccountNotFoundError(key)
            return ConsumeResult(account=current, consumed=False)
        except LedgerError as e:
            logger.error(f"Quota consume failed for {key}: {e}")
            raise QuotaServiceError(ERROR_MESSAGES["UPDATE_FAILED"]) from e
