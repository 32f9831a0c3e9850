from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from coursemedia.core.errors import AuthenticationError, PermissionDeniedError
from coursemedia.core.security import Identity, identity_from_token
from coursemedia.db.session import SessionLocal
from coursemedia.integrations.storage import StorageClient, get_storage_client


# ---------- DB DEPENDENCY ----------


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_storage() -> StorageClient:
    return get_storage_client()


# ---------- AUTH DEPENDENCIES ----------

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    return identity_from_token(credentials.credentials)


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Dependency factory gating a route on any of the given token roles."""

    def _checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not identity.has_any_role(roles):
            raise PermissionDeniedError(
                f"Requires one of roles: {', '.join(sorted(roles))}"
            )
        return identity

    return _checker
