"""Authentication: bearer tokens validated against the identity provider.

Provides:
- IdentityClient: forwards the caller's token to the provider's
  "get current user" endpoint
- FastAPI dependency that resolves the authenticated user or raises 401

Nothing here touches the database; a request is rejected before any data
access when its token does not validate.
"""

import logging
from typing import Optional

import httpx
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from coordinator.config import AppConfig
from coordinator.core.errors import Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    role: Optional[str] = None


class IdentityClient:
    """Resolves bearer tokens to users via ``GET /auth/v1/user``."""

    def __init__(self, http: httpx.AsyncClient, config: AppConfig):
        self._http = http
        self.url = config.identity_user_url
        self.anon_key = config.IDENTITY_ANON_KEY
        self.timeout = config.IDENTITY_TIMEOUT_SECONDS

    async def get_user(self, token: str) -> AuthenticatedUser:
        """Return the token's user.

        Raises:
            Unauthorized: the provider rejected the token or could not be reached
        """
        try:
            resp = await self._http.get(
                self.url,
                headers={"Authorization": f"Bearer {token}", "apikey": self.anon_key},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Identity provider unreachable: {e}")
            raise Unauthorized("Token validation failed") from e

        if resp.status_code != 200:
            raise Unauthorized("Invalid token")

        try:
            return AuthenticatedUser.model_validate(resp.json())
        except ValueError as e:
            logger.warning(f"Identity provider returned an unusable user: {e}")
            raise Unauthorized("Token validation failed") from e


def get_identity_client(request: Request) -> IdentityClient:
    return request.app.state.identity_client


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    identity: IdentityClient = Depends(get_identity_client),
) -> AuthenticatedUser:
    """Extract and validate the current user from the Authorization header."""
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthorized("Missing or invalid authorization header")
    return await identity.get_user(credentials.credentials)
