import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from crm_billing_svc.config import Settings, get_settings

bearer_scheme = HTTPBearer()


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


def decode_access_token(token: str, settings: Settings) -> dict:
    """
    Verify a bearer token issued by the auth provider and return its claims.

    :raises JWTError: if the token is malformed, expired or wrongly signed.
    """
    options = {"verify_aud": settings.jwt_audience is not None}
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options=options,
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    if not settings.jwt_secret:
        logging.error("JWT secret not configured; rejecting authenticated request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication not configured")
    try:
        claims = decode_access_token(credentials.credentials, settings)
    except JWTError as e:
        logging.info(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    return AuthenticatedUser(id=user_id, email=claims.get("email"))
