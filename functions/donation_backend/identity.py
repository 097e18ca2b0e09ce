"""
Identity verification: Firebase Auth ID tokens and a static test provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

from donation_backend.errors import Unauthenticated, Upstream

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Unauthorized: Invalid token"
MISSING_TOKEN_MESSAGE = "Unauthorized: No token provided"


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


class IdentityProvider(Protocol):
    def verify(self, token: str) -> Identity:
        ...

    def delete_user(self, uid: str) -> None:
        ...


def parse_bearer(authorization: Optional[str]) -> str:
    """Extracts the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        raise Unauthenticated(MISSING_TOKEN_MESSAGE)
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated(MISSING_TOKEN_MESSAGE)
    return token


class FirebaseIdentityProvider:
    def __init__(self, app=None):
        self._app = app

    def verify(self, token: str) -> Identity:
        try:
            decoded = auth.verify_id_token(token, app=self._app)
        except (
            auth.InvalidIdTokenError,
            auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError,
            auth.UserDisabledError,
            auth.CertificateFetchError,
            ValueError,
        ) as e:
            logger.info("Rejected ID token: %s", e)
            raise Unauthenticated(INVALID_TOKEN_MESSAGE) from e
        return Identity(uid=decoded["uid"], email=decoded.get("email"))

    def delete_user(self, uid: str) -> None:
        try:
            auth.delete_user(uid, app=self._app)
        except auth.UserNotFoundError:
            logger.warning("Auth user %s already removed", uid)
        except firebase_exceptions.FirebaseError as e:
            raise Upstream(f"Failed to revoke credential: {e}") from e


@dataclass
class StaticIdentityProvider:
    """Maps fixed tokens to identities. For tests and in-memory runs."""

    tokens: dict = field(default_factory=dict)
    deleted_uids: list = field(default_factory=list)

    def verify(self, token: str) -> Identity:
        identity = self.tokens.get(token)
        if identity is None or identity.uid in self.deleted_uids:
            raise Unauthenticated(INVALID_TOKEN_MESSAGE)
        return identity

    def delete_user(self, uid: str) -> None:
        self.deleted_uids.append(uid)
