from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Union

from jose import jwt, JWTError

from coursemedia.core.config import settings
from coursemedia.core.errors import AuthenticationError


@dataclass(frozen=True)
class Identity:
    """Trusted caller identity decoded from the bearer token."""

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return bool(self.roles.intersection(roles))


def create_access_token(
    subject: str,
    roles: Iterable[str] = (),
    expires_delta: Union[timedelta, None] = None,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": subject,
        "roles": sorted(roles),
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    encoded_jwt = jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )


def identity_from_token(token: str) -> Identity:
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise AuthenticationError("Could not validate credentials")

    sub = payload.get("sub")
    if not sub:
        raise AuthenticationError("Could not validate credentials")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Identity(user_id=str(sub), roles=frozenset(roles))
