from typing import Optional

from sqlalchemy.orm import Session

from docsign.modules.documents.models.user import User


class UserKeyDirectory:
    """Resolves a signer identity to the public key registered on its user account."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def public_key_for(self, identity: str) -> Optional[str]:
        user = (
            self.db.query(User)
            .filter(User.identity == identity, User.is_active.is_(True))
            .first()
        )
        if user is None:
            return None
        return user.public_key_pem
