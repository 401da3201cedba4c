"""
LoveCakes Backend — Authentication Dependencies
=================================================

What:  Guards for the internal (authenticated) API.
How:   `require_token` checks that an `Authorization: Bearer <token>` header
       is present and returns the raw token. The token is NOT verified yet;
       verification belongs to the authentication layer that has not been
       built. `get_credential` returns the identity that layer stores on
       `request.state.credential` and refuses the request when there is none.
Who:   Attached to the internal router; CRUD handlers depend on
       `get_credential`.
"""

import logging
from typing import Optional

from fastapi import Request

from app.exceptions import UnauthorizedError
from app.services.crud_controller import Credential

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from "Bearer <token>", or None when absent/malformed."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


async def require_token(request: Request) -> str:
    """
    FastAPI dependency: fail with 401 unless a bearer token is present.

    Raises:
        UnauthorizedError: Header missing, not a Bearer scheme, or empty token.
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        logger.info("Rejected %s %s: no bearer token", request.method, request.url.path)
        raise UnauthorizedError()
    request.state.token = token
    return token


async def get_credential(request: Request) -> Credential:
    """
    FastAPI dependency: the authenticated identity of the caller.

    Raises:
        UnauthorizedError: No identity was attached to the request.
    """
    credential = getattr(request.state, "credential", None)
    if not isinstance(credential, Credential):
        raise UnauthorizedError(message="Invalid authentication token")
    return credential
