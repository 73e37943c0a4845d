"""
Authentication: Firebase ID tokens → Principal.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth

from agapay.config.firebase import initialize_firebase
from agapay.models.user import Principal

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def principal_from_token(token: str) -> Principal:
    """
    Verify a Firebase ID token and build the principal from its claims.

    Raises:
        ValueError: if the token is missing, malformed, expired or revoked
    """
    if not token:
        raise ValueError("Missing token")
    initialize_firebase()
    try:
        claims = auth.verify_id_token(token, check_revoked=True)
    except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError,
            auth.CertificateFetchError, auth.UserDisabledError) as e:
        raise ValueError(str(e)) from e
    return Principal.from_claims(claims)


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return principal_from_token(credentials.credentials)
    except ValueError as e:
        logger.info(f"Rejected token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
