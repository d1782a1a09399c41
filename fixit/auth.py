"""Bearer-token authentication and role checks.

Tokens are verified by the identity provider (Firebase); FixIt only maps the
verified identity onto its own ``users`` rows.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.database import models
from fixit.database.config import get_db
from fixit.errors import AuthenticationError, AuthorizationError, ServiceUnavailableError
from fixit.permissions import Capability, has_capability

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("fixit.security")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str]
    email_verified: bool = False


class IdentityProviderError(Exception):
    """Raised when a token cannot be verified."""

    pass


class IdentityProvider:
    """Abstract base for token verifiers."""

    async def verify(self, token: str) -> Identity:
        raise NotImplementedError


class FirebaseIdentityProvider(IdentityProvider):
    """Verifies Firebase ID tokens through the Identity Toolkit lookup API."""

    LOOKUP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:lookup"

    def __init__(self, api_key: str, timeout: float = 5.0):
        self.api_key = api_key
        self.timeout = timeout

    async def verify(self, token: str) -> Identity:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.LOOKUP_URL, params={"key": self.api_key}, json={"idToken": token})
        except httpx.HTTPError as e:
            logger.error(f"Identity provider request failed: {str(e)}")
            raise IdentityProviderError(f"Identity provider unavailable: {str(e)}")

        if response.status_code != 200:
            raise IdentityProviderError("Invalid token")

        users = response.json().get("users") or []
        if not users:
            raise IdentityProviderError("Invalid token")
        account = users[0]
        return Identity(
            uid=account["localId"],
            email=(account.get("email") or "").lower() or None,
            email_verified=bool(account.get("emailVerified")),
        )


def get_identity_provider() -> Optional[IdentityProvider]:
    """
    Factory for the configured identity provider.

    Reads FIREBASE_API_KEY; returns None when authentication is not configured.
    """
    api_key = os.getenv("FIREBASE_API_KEY", "").strip()
    if not api_key:
        logger.warning("FIREBASE_API_KEY not set, authenticated routes are unavailable")
        return None
    return FirebaseIdentityProvider(api_key)


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    provider: Optional[IdentityProvider] = Depends(get_identity_provider),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access denied. No token provided.")
    if provider is None:
        raise ServiceUnavailableError("Authentication service is not configured")
    try:
        return await provider.verify(credentials.credentials)
    except IdentityProviderError as e:
        security_logger.warning(f"Token verification failed: {str(e)}")
        raise AuthenticationError("Invalid token.")


async def resolve_user(db: AsyncSession, identity: Identity) -> Optional[models.User]:
    """Find the user for ``identity`` by uid, then by verified email (linking the uid)."""
    result = await db.execute(select(models.User).where(models.User.firebase_uid == identity.uid))
    user = result.scalars().first()

    changed = False
    # Only a verified email may claim an existing account
    if user is None and identity.email and identity.email_verified:
        result = await db.execute(select(models.User).where(models.User.email == identity.email))
        user = result.scalars().first()
        if user is not None and not user.firebase_uid:
            user.firebase_uid = identity.uid
            changed = True

    # Sync email verification status
    if user is not None and identity.email_verified and not user.is_email_verified:
        user.is_email_verified = True
        changed = True

    if changed:
        await db.commit()
    return user


async def get_current_user(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> models.User:
    user = await resolve_user(db, identity)
    if user is None:
        raise AuthenticationError("User not found in system.")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated.")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    provider: Optional[IdentityProvider] = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_db),
) -> Optional[models.User]:
    """Current user when a valid token is present, otherwise None."""
    if credentials is None or provider is None:
        return None
    try:
        identity = await provider.verify(credentials.credentials)
    except IdentityProviderError:
        return None
    user = await resolve_user(db, identity)
    if user is None or not user.is_active:
        return None
    return user


def require_capability(capability: Capability, message: str = "You do not have permission to perform this action."):
    """Dependency factory that only lets users holding ``capability`` through."""

    async def dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if has_capability(user, capability):
            return user
        security_logger.warning(
            "Unauthorized role access attempt",
            extra={"user_id": user.id, "role": user.role, "capability": capability.value},
        )
        raise AuthorizationError(message)

    return dependency
