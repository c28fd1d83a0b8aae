"""
Shared API dependencies: bearer-token authentication
"""
import logging
from typing import Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import User

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the caller from a bearer JWT whose subject is the user id

    Raises:
        HTTPException: 401 for a missing, invalid or unknown-user token
    """
    if creds is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = jwt.decode(creds.credentials, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        user_id = UUID(str(payload["sub"]))
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.info(f"Rejected bearer token: {str(e)}")
        raise _unauthorized("Invalid or expired token")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise _unauthorized("User not found")
    return user
