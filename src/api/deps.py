from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.config import get_settings
from core.security import TokenError, create_token, decode_token
from db.base import to_uuid
from db.models import Profile
from db.session import get_db
from services.messaging import TemplateCache

security_scheme = HTTPBearer()


def get_current_profile(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security_scheme)],
    db: Session = Depends(get_db),
) -> Profile:
    token = credentials.credentials
    try:
        profile_id = to_uuid(decode_token(token, expected_type="access"))
    except (TokenError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    profile = db.query(Profile).filter(Profile.id == profile_id).first()
    if not profile:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Profile not found")
    return profile


def get_template_cache(request: Request) -> Optional[TemplateCache]:
    return getattr(request.app.state, "template_cache", None)


def create_access_refresh_tokens(profile_id: str) -> dict:
    settings = get_settings()
    access = create_token(
        subject=profile_id,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        token_type="access",
    )
    refresh = create_token(
        subject=profile_id,
        expires_delta=timedelta(minutes=settings.refresh_token_expire_minutes),
        token_type="refresh",
    )
    return {"access_token": access, "refresh_token": refresh}
