from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from api.deps import create_access_refresh_tokens
from core.security import TokenError, decode_token, generate_webhook_prefix, get_password_hash, verify_password
from db.models import Profile
from db.session import get_db

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    company_name: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


@router.post("/register", response_model=TokenResponse)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    existing = db.query(Profile).filter(Profile.email == payload.email).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email taken")
    profile = Profile(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        company_name=payload.company_name,
        webhook_path_prefix=generate_webhook_prefix(),
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return TokenResponse(**create_access_refresh_tokens(str(profile.id)))


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    profile = db.query(Profile).filter(Profile.email == payload.email).first()
    if not profile or not verify_password(payload.password, profile.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return TokenResponse(**create_access_refresh_tokens(str(profile.id)))


@router.post("/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest):
    try:
        profile_id = decode_token(payload.refresh_token, expected_type="refresh")
    except TokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    return TokenResponse(**create_access_refresh_tokens(profile_id))
