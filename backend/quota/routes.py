"""
Quota API Routes

Endpoints:
- GET /api/quota - Get balance (provisions new users with a verified token)
- POST /api/quota - Combined endpoint: consume one credit when useQuota is true
- POST /api/quota/use - Consume one credit
- POST /api/quota/add - Add credits

Every error response has the shape {"error": <message>}.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from .config import ERROR_MESSAGES
from .identity import UnauthorizedError
from .ledger import AccountNotFoundError, LedgerError
from .models import AddCreditsRequest, ConsumeRequest, ErrorResponse, QuotaResponse, QuotaUpdateRequest
from .service import QuotaService, QuotaServiceError, QuotaValidationError

logger = logging.getLogger(__name__)

quota_router = APIRouter(prefix="/quota", tags=["Quota"])

bearer = HTTPBearer(auto_error=False)


def get_quota_service(request: Request) -> QuotaService:
    """QuotaService built at startup and stored on the application state."""
    return request.app.state.quota_service


def _credential(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials is None or not credentials.credentials.strip():
        return None
    return credentials.credentials.strip()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _error_for(exc: Exception, failure_message: str, operation: str) -> JSONResponse:
    """Map a service exception to its HTTP response."""
    if isinstance(exc, QuotaValidationError):
        return _error(400, exc.message)
    if isinstance(exc, UnauthorizedError):
        return _error(401, exc.message)
    if isinstance(exc, AccountNotFoundError):
        return _error(404, ERROR_MESSAGES["NOT_FOUND"])

    unexpected = not isinstance(exc, (QuotaServiceError, LedgerError))
    logger.error(f"Quota {operation} failed: {type(exc).__name__}: {exc}", exc_info=unexpected)
    return _error(500, failure_message)


async def _read_body(request: Request, model):
    """Parse a JSON object body into model; None when it is not one."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return model.model_validate(payload)
    except ValidationError:
        return None


def _ok(account) -> dict:
    return QuotaResponse.from_account(account).model_dump(by_alias=True)


# ==================== BALANCE ====================

@quota_router.get("")
async def get_quota(
    user_id: Optional[str] = Query(None, alias="userId"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: QuotaService = Depends(get_quota_service),
):
    """
    Get a user's remaining quota.

    userId may be omitted when a bearer token is sent; the token holder's
    identity is used instead.
    """
    credential = _credential(credentials)

    try:
        if user_id and user_id.strip():
            return _ok(await service.get_balance(user_id, credential))
        if not credential:
            return _error(400, "userId query parameter is required")
        return _ok(await service.get_own_balance(credential))
    except Exception as e:
        return _error_for(e, ERROR_MESSAGES["LOAD_FAILED"], "GET")


@quota_router.post("")
async def update_quota(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: QuotaService = Depends(get_quota_service),
):
    """
    Combined quota endpoint kept for older bridge clients.

    Body: {"userId": str, "useQuota": bool}. With useQuota=false the balance
    is returned unchanged; with useQuota=true one credit is consumed, and an
    exhausted quota answers 409 with the current balance.
    """
    body = await _read_body(request, QuotaUpdateRequest)
    if body is None:
        return _error(400, ERROR_MESSAGES["INVALID_BODY"])
    if not isinstance(body.use_quota, bool):
        return _error(400, ERROR_MESSAGES["USE_QUOTA_INVALID"])

    credential = _credential(credentials)

    try:
        if not body.use_quota:
            return _ok(await service.get_balance(body.user_id, credential))

        result = await service.consume_credit(body.user_id, credential)
        if not result.consumed:
            return JSONResponse(
                status_code=409,
                content={**_ok(result.account), "error": ERROR_MESSAGES["QUOTA_EXHAUSTED"]},
            )
        return _ok(result.account)
    except Exception as e:
        return _error_for(e, ERROR_MESSAGES["UPDATE_FAILED"], "POST")


# ==================== CONSUME ====================

@quota_router.post("/use")
async def use_quota(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: QuotaService = Depends(get_quota_service),
):
    """
    Consume one credit.

    A zero balance is returned as-is with 200; no credential is needed for it.
    """
    body = await _read_body(request, ConsumeRequest)
    if body is None:
        return _error(400, ERROR_MESSAGES["INVALID_BODY"])

    try:
        result = await service.consume_credit(body.user_id, _credential(credentials))
        return _ok(result.account)
    except Exception as e:
        return _error_for(e, ERROR_MESSAGES["UPDATE_FAILED"], "/use")


# ==================== TOP-UP ====================

@quota_router.post("/add")
async def add_quota(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: QuotaService = Depends(get_quota_service),
):
    """Add credits to the token holder's own balance."""
    body = await _read_body(request, AddCreditsRequest)
    if body is None:
        return _error(400, ERROR_MESSAGES["INVALID_BODY"])

    try:
        account = await service.add_credits(body.user_id, body.credits, _credential(credentials))
        return _ok(account)
    except Exception as e:
        return _error_for(e, ERROR_MESSAGES["ADD_FAILED"], "/add")
