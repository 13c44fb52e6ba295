import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import or_
from sqlalchemy.orm import Session

from docsign.database import get_db
from docsign.modules.auth.schemas.auth_schemas import (
    LoginRequest, PublicKeyUpdate, TokenResponse, UserCreate, UserResponse
)
from docsign.modules.auth.services.auth_service import AuthService
from docsign.modules.documents.models.user import User
from docsign.modules.documents.services.crypto import normalize_public_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])
security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def _user_for_token(db: Session, token: str) -> User:
    user = AuthService.get_current_user(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security), db: Session = Depends(get_db)):
    """Dependency returning the authenticated user."""
    return _user_for_token(db, credentials.credentials)


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """The authenticated user, or None when no token was sent. A bad token is still rejected."""
    if credentials is None:
        return None
    return _user_for_token(db, credentials.credentials)


def _checked_public_key(public_key_pem: str) -> str:
    normalized = normalize_public_key(public_key_pem)
    if normalized is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="public_key_pem must be a PEM encoded ECDSA public key",
        )
    return normalized


@router.post("/login", response_model=TokenResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    user = AuthService.authenticate_user(db, login_data.email, login_data.password)
    if not user:
        logger.warning("Failed login attempt", extra={"email": login_data.email})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = AuthService.create_access_token(data={"sub": user.identity})
    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        identity=user.identity,
        user_name=user.name,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(user_data: UserCreate, db: Session = Depends(get_db)):
    existing = db.query(User).filter(
        or_(User.email == user_data.email, User.identity == user_data.identity)
    ).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email or identity already registered",
        )

    public_key = _checked_public_key(user_data.public_key_pem) if user_data.public_key_pem else None
    new_user = User(
        identity=user_data.identity,
        name=user_data.name,
        email=user_data.email,
        password_hash=AuthService.get_password_hash(user_data.password),
        public_key_pem=public_key,
        is_active=True,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info("User %s registered", new_user.identity)
    return new_user


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/me/public-key", response_model=UserResponse)
def update_public_key(
    body: PublicKeyUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Register or rotate the caller's signing key."""
    current_user.public_key_pem = _checked_public_key(body.public_key_pem)
    db.commit()
    db.refresh(current_user)
    logger.info("Public key updated for %s", current_user.identity)
    return current_user
