from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from recipe_ingest.app.core.config import get_settings

settings = get_settings()

connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(settings.database_url, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    from recipe_ingest.app.db import models  # noqa: F401
    from recipe_ingest.app.db.base import Base

    Base.metadata.create_all(bind=engine)
