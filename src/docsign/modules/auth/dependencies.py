from typing import Optional

from fastapi import Depends

from docsign.modules.auth.controllers.auth_controller import get_current_user, get_optional_user
from docsign.modules.documents.models.user import User

ANONYMOUS_IDENTITY = "anonymous"


def get_current_identity(current_user: User = Depends(get_current_user)) -> str:
    """The authenticated caller's identity; passed as the actor to every operation."""
    return current_user.identity


def get_caller_identity(current_user: Optional[User] = Depends(get_optional_user)) -> str:
    """Identity for routes open to anyone; callers without a token act as 'anonymous'."""
    return current_user.identity if current_user is not None else ANONYMOUS_IDENTITY
