"""JWT issuing/verification and the FastAPI security dependency.

This module provides `JwtTokenProvider`, which signs and verifies the
access and refresh tokens handed out by `AuthService`, and the FastAPI
dependency `get_current_user` that validates the bearer token and
returns the corresponding active `User`.

Token failures raise `BusinessException` so they are rendered through
the standard error envelope (A001 missing, A002 invalid, A003 expired).
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import BusinessException, ErrorCode

ACCESS = "access"
REFRESH = "refresh"

bearer_scheme = HTTPBearer(auto_error=False)


class JwtTokenProvider:
    def __init__(self, secret: str = None, algorithm: str = None,
                 access_ttl_seconds: int = None, refresh_ttl_seconds: int = None):
        self.secret = secret or settings.JWT_SECRET
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.access_ttl_seconds = access_ttl_seconds if access_ttl_seconds is not None else settings.JWT_EXPIRE_SECONDS
        self.refresh_ttl_seconds = (refresh_ttl_seconds if refresh_ttl_seconds is not None
                                    else settings.JWT_REFRESH_EXPIRE_SECONDS)

    def _encode(self, claims: dict, ttl_seconds: int) -> str:
        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + timedelta(seconds=ttl_seconds)).timestamp())
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def generate_access_token(self, user_uuid: str, email: str, roles: Iterable[str] = ("ROLE_USER",)) -> str:
        """Sign a short-lived token carrying the user's identity and roles."""
        return self._encode(
            {"sub": user_uuid, "email": email, "roles": list(roles), "type": ACCESS},
            self.access_ttl_seconds,
        )

    def generate_refresh_token(self, user_uuid: str) -> str:
        return self._encode({"sub": user_uuid, "type": REFRESH}, self.refresh_ttl_seconds)

    def decode(self, token: str, expected_type: Optional[str] = None) -> dict:
        """Verify `token` and return its claims.

        Raises A003 when the signature is valid but the token expired and
        A002 for anything else, including a token of the wrong type.
        """
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise BusinessException(ErrorCode.EXPIRED_TOKEN).with_cause(exc)
        except jwt.InvalidTokenError as exc:
            raise BusinessException(ErrorCode.INVALID_TOKEN).with_cause(exc)
        if not claims.get("sub"):
            raise BusinessException(ErrorCode.INVALID_TOKEN, "Token has no subject")
        if expected_type is not None and claims.get("type") != expected_type:
            raise (BusinessException(ErrorCode.INVALID_TOKEN, f"Expected a {expected_type} token")
                   .add_parameter("tokenType", claims.get("type")))
        return claims

    def validate_token(self, token: str) -> bool:
        try:
            self.decode(token)
        except BusinessException:
            return False
        return True

    def get_user_uuid(self, token: str) -> str:
        return self.decode(token)["sub"]


token_provider = JwtTokenProvider()


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
                     db: Session = Depends(get_session)) -> models.User:
    """FastAPI dependency that returns the authenticated, active user."""
    if credentials is None or not credentials.credentials:
        raise BusinessException(ErrorCode.UNAUTHORIZED)
    claims = token_provider.decode(credentials.credentials, expected_type=ACCESS)
    user = repositories.UserRepository(db).get_by_uuid(claims["sub"])
    if user is None or user.status != models.UserStatus.ACTIVE:
        raise BusinessException(ErrorCode.USER_NOT_FOUND).add_parameter("userUuid", claims["sub"])
    return user
