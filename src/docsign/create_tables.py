import logging

from docsign.database import Base, engine
# Imported so every model registers with Base
from docsign.modules.documents.models import AuditEntry, Document, Signature, Signer, User  # noqa: F401
from docsign.modules.notifications.models.notification import Notification  # noqa: F401

logger = logging.getLogger(__name__)


def create_tables(bind=None):
    """Create all tables on `bind` (the application engine by default)."""
    bind = bind or engine
    logger.info("Creating tables: %s", ", ".join(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    create_tables()
