import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def build_database_url(database_url: str, db_name: str):
    """Apply DB_NAME when the connection string does not name a database"""
    url = make_url(database_url)
    if not url.database and db_name and not url.drivername.startswith("sqlite"):
        url = url.set(database=db_name)
    return url


def create_db_engine(database_url: str, db_name: str = ""):
    url = build_database_url(database_url, db_name)
    if url.drivername.startswith("sqlite"):
        # One shared connection keeps an in-memory database alive across sessions
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = create_db_engine(settings.DATABASE_URL, settings.DB_NAME)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Check connectivity and create tables. Raises when the database is unreachable."""
    from . import models  # noqa: F401  registers the tables on Base

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=engine)
    logger.info("Connected to database successfully")
