from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    identity: str
    user_name: str


class UserCreate(BaseModel):
    identity: str = Field(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9._@-]+$")
    name: str
    email: EmailStr
    password: str = Field(..., min_length=8)
    public_key_pem: Optional[str] = None


class PublicKeyUpdate(BaseModel):
    public_key_pem: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    identity: str
    name: str
    email: str
    public_key_pem: Optional[str] = None
    is_active: bool
    created_at: datetime
