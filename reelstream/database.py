from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
import os
from dotenv import load_dotenv
import logging

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./reelstream.db")


def _engine_options(url: str) -> dict:
    """Pool settings for server databases; SQLite keeps its default pool."""
    options = {
        "pool_pre_ping": True,  # Test connections before using them
        "echo": os.getenv("DB_ECHO", "false").lower() == "true",
    }
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        return options

    options.update(
        pool_size=int(os.getenv("DB_POOL_SIZE", 5)),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", 10)),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", 30)),
        pool_recycle=int(os.getenv("DB_POOL_RECYCLE", 3600)),
    )
    return options


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))


@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Log when a new connection is created"""
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI routes
def get_db():
    """
    Database session dependency for FastAPI.
    The session is always closed when the request finishes.

    Usage:
        @router.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
