from jose import jwt, JWTError
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from salonqueue.core.config import settings


# Bearer scheme; guests are allowed through on public endpoints
security = HTTPBearer(auto_error=False)


class AuthUtils:
    """Utility class for reading identities out of bearer tokens"""

    @staticmethod
    def create_access_token(data: dict) -> str:
        """
        Encode a token the way the identity provider does.
        Used by local tooling and tests.

        Args:
            data: Claims to encode; ``sub`` carries the caller id

        Returns:
            Encoded JWT token string
        """
        return jwt.encode(
            data.copy(),
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM
        )

    @staticmethod
    def decode_caller_id(token: str) -> str:
        """
        Decode and validate a JWT token.

        Args:
            token: JWT token string

        Returns:
            The authenticated caller id (``sub`` claim)

        Raises:
            HTTPException: If token is invalid or expired
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError:
            raise credentials_exception

        caller_id = payload.get("sub")
        if caller_id is None:
            raise credentials_exception
        return str(caller_id)


def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """
    Dependency yielding the authenticated caller id, or None for guests.
    A malformed token is still rejected.
    """
    if credentials is None:
        return None
    return AuthUtils.decode_caller_id(credentials.credentials)


def get_current_caller(
    caller_id: Optional[str] = Depends(get_optional_caller)
) -> str:
    """
    Dependency requiring an authenticated caller (staff and owner actions).

    Raises:
        HTTPException: If no bearer token was supplied
    """
    if caller_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller_id
