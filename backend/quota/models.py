"""
Quota Data Models

Pydantic models for quota operations.
QuotaAccount mirrors the documents stored in the quota MongoDB collection;
the request/response models define the JSON shapes of the HTTP boundary.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


# ==================== ACCOUNT MODELS ====================

class QuotaAccount(BaseModel):
    """Remaining usage credits for one normalized user id"""
    user_id: str
    balance: int = Field(..., ge=0)
    created_at: Optional[str] = None  # ISO datetime string
    updated_at: Optional[str] = None  # ISO datetime string


class ConsumeResult(BaseModel):
    """Outcome of a consume request"""
    account: QuotaAccount
    consumed: bool  # False when the balance was already 0


# ==================== RESPONSE MODELS ====================

class QuotaResponse(BaseModel):
    """Response body for every successful quota operation"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    balance: int

    @classmethod
    def from_account(cls, account: QuotaAccount) -> "QuotaResponse":
        return cls(user_id=account.user_id, balance=account.balance)


class ErrorResponse(BaseModel):
    """Body of every failed quota request"""
    error: str


# ==================== REQUEST MODELS ====================
# Field values are validated by the service layer; bad input maps to a 400
# with an {"error": ...} body.

class ConsumeRequest(BaseModel):
    """Body for POST /quota/use"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[Any] = Field(None, alias="userId")


class AddCreditsRequest(BaseModel):
    """Body for POST /quota/add"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[Any] = Field(None, alias="userId")
    credits: Optional[Any] = None


class QuotaUpdateRequest(BaseModel):
    """Body for the combined POST /quota endpoint"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[Any] = Field(None, alias="userId")
    use_quota: Optional[Any] = Field(None, alias="useQuota")
