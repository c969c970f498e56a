"""
Identity Verifier - Tesla OAuth token verification

Confirms that a bearer token was issued to the user it is presented for by
calling the provider's userinfo endpoint. Every call is a fresh round trip:
provider responses are never cached and failed calls are never retried.

All failure modes (missing token, network error, timeout, non-2xx status,
unexpected body, missing claim, identity mismatch) surface as a single
UnauthorizedError. Provider response bodies are logged, never returned.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .config import ERROR_MESSAGES, IDENTITY_TIMEOUT_SECONDS, TESLA_USERINFO_URL

logger = logging.getLogger(__name__)


class UnauthorizedError(Exception):
    """Credential missing, invalid, or issued to a different user."""

    def __init__(self, message: str = ERROR_MESSAGES["UNAUTHORIZED"]):
        super().__init__(message)
        self.message = message


def normalize_user_id(user_id: str) -> str:
    """Canonical form of a user id: trimmed and lower-cased."""
    return user_id.strip().lower()


class IdentityVerifier:
    """Verifies bearer credentials against the identity provider."""

    def __init__(
        self,
        userinfo_url: str = TESLA_USERINFO_URL,
        timeout_seconds: float = IDENTITY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.userinfo_url = userinfo_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_profile(self, credential: Optional[str]) -> Dict[str, Any]:
        """
        Fetch the userinfo profile for a credential.

        Raises:
            UnauthorizedError: on any failure to obtain a JSON object profile
        """
        if not credential or not credential.strip():
            raise UnauthorizedError(ERROR_MESSAGES["MISSING_AUTH"])

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.get(
                    self.userinfo_url,
                    headers={
                        "Authorization": f"Bearer {credential.strip()}",
                        "Cache-Control": "no-store",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Tesla token verification failed: {type(e).__name__}: {e}")
            raise UnauthorizedError()

        if not response.is_success:
            logger.warning(f"Tesla userinfo rejected token (status={response.status_code})")
            raise UnauthorizedError("Invalid Tesla access token")

        try:
            profile = response.json()
        except ValueError:
            logger.error("Tesla userinfo returned a non-JSON body")
            raise UnauthorizedError()

        if not isinstance(profile, dict):
            logger.error(f"Tesla userinfo returned {type(profile).__name__}, expected object")
            raise UnauthorizedError()

        return profile

    async def verify(self, credential: Optional[str], claimed_user_id: str) -> str:
        """
        Confirm the credential belongs to claimed_user_id.

        The profile's email claim is the only accepted identity here; the
        subject fallback applies to resolve_identity() alone.

        Returns:
            The normalized user id
        """
        profile = await self.fetch_profile(credential)
        email = _normalized_claim(profile, "email")

        if not email:
            logger.error(
                f"Tesla profile missing email for requested user {claimed_user_id}, "
                f"profile keys: {sorted(profile.keys())}"
            )
            raise UnauthorizedError("Tesla user profile missing email")

        expected = normalize_user_id(claimed_user_id)
        if email != expected:
            logger.warning(f"Tesla token identity mismatch for requested user {expected}")
            raise UnauthorizedError(ERROR_MESSAGES["TOKEN_MISMATCH"])

        return expected

    async def resolve_identity(self, credential: Optional[str]) -> str:
        """
        Resolve the caller's user id from the credential alone.

        The email is normalized like any user id. The subject is only trimmed:
        provider subjects are case-sensitive.
        """
        profile = await self.fetch_profile(credential)
        user_id = _normalized_claim(profile, "email") or _claim(profile, "sub")

        if not user_id:
            logger.error(f"Unable to resolve user identity, profile keys: {sorted(profile.keys())}")
            raise UnauthorizedError("Unable to resolve user identity")

        return user_id


def _claim(profile: Dict[str, Any], key: str) -> Optional[str]:
    value = profile.get(key)
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _normalized_claim(profile: Dict[str, Any], key: str) -> Optional[str]:
    value = _claim(profile, key)
    return normalize_user_id(value) if value else None
