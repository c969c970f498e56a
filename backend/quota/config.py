"""
Quota Configuration and Constants

Starting balance, store names and identity provider settings are defined here.
Values can be overridden from the environment; they are resolved once at
startup via QuotaSettings.from_env() and passed to the ledger and verifier.
"""

import os
from dataclasses import dataclass

# ==================== DEFAULTS ====================
DEFAULT_QUOTA = 10
QUOTA_COLLECTION = "tesla_map_bridge_usage_quota"
QUOTA_META_COLLECTION = "quota_meta"

# ==================== IDENTITY PROVIDER ====================
TESLA_USERINFO_URL = "https://auth.tesla.com/oauth2/v3/userinfo"
IDENTITY_TIMEOUT_SECONDS = 10.0

# Upper bound for a single top-up; keeps stored balances inside BSON int64
MAX_CREDITS_PER_TOP_UP = 1_000_000

# ==================== ERROR MESSAGES ====================
ERROR_MESSAGES = {
    "USER_ID_REQUIRED": "userId is required",
    "CREDITS_INVALID": "credits must be a positive integer",
    "CREDITS_TOO_LARGE": f"credits must not exceed {MAX_CREDITS_PER_TOP_UP}",
    "USE_QUOTA_INVALID": "useQuota must be a boolean",
    "INVALID_BODY": "Invalid request body",
    "MISSING_AUTH": "Missing Authorization header",
    "UNAUTHORIZED": "Failed to verify Tesla token",
    "TOKEN_MISMATCH": "Tesla access token does not match requested userId",
    "NOT_FOUND": "Quota record not found",
    "QUOTA_EXHAUSTED": "Quota exhausted",
    "LOAD_FAILED": "Failed to load quota",
    "UPDATE_FAILED": "Failed to update quota",
    "ADD_FAILED": "Failed to add quota",
}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class QuotaSettings:
    """Process-wide quota configuration."""
    default_balance: int = DEFAULT_QUOTA
    collection_name: str = QUOTA_COLLECTION
    userinfo_url: str = TESLA_USERINFO_URL
    identity_timeout_seconds: float = IDENTITY_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.default_balance < 0:
            raise ValueError("QUOTA_DEFAULT_BALANCE must not be negative")
        if self.identity_timeout_seconds <= 0:
            raise ValueError("QUOTA_IDENTITY_TIMEOUT_SECONDS must be positive")

    @classmethod
    def from_env(cls) -> "QuotaSettings":
        """Build settings from QUOTA_* environment variables."""
        return cls(
            default_balance=_env_int("QUOTA_DEFAULT_BALANCE", DEFAULT_QUOTA),
            collection_name=os.environ.get("QUOTA_COLLECTION") or QUOTA_COLLECTION,
            userinfo_url=os.environ.get("QUOTA_USERINFO_URL") or TESLA_USERINFO_URL,
            identity_timeout_seconds=_env_float(
                "QUOTA_IDENTITY_TIMEOUT_SECONDS", IDENTITY_TIMEOUT_SECONDS
            ),
        )
