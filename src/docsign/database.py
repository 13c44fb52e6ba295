from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from docsign.config import get_settings

settings = get_settings()


def build_engine(database_url: str, **kwargs):
    """SQLite connections are shared with the scheduler and primitive threads."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(database_url, **kwargs)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
