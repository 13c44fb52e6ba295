from .auth_schemas import (
    LoginRequest, PublicKeyUpdate, TokenResponse, UserCreate, UserResponse
)

__all__ = [
    'LoginRequest', 'PublicKeyUpdate', 'TokenResponse', 'UserCreate', 'UserResponse'
]
