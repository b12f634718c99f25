# auth.py
from typing import Optional

from fastapi import Depends, HTTPException, Request
from jose import jwt, JOSEError
from sqlalchemy.orm import Session

import models
from config import settings
from database import get_db


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_user_id(request: Request) -> str:
    """
    Subject of the access token issued by the hosted auth provider
    (HS256, signed with the project's JWT secret).
    """
    token = _bearer_token(request)
    if not token or not settings.auth_jwt_secret:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
        )
    except JOSEError:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token")
    return sub


def require_admin(user_id: str = Depends(current_user_id), db: Session = Depends(get_db)) -> models.Profile:
    profile = db.query(models.Profile).filter(models.Profile.id == user_id).first()
    if not profile or not profile.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return profile
