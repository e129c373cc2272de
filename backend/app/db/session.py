from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings

settings = get_settings()


def engine_connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        # Request handlers run in a threadpool; SQLite must accept cross-thread use.
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    connect_args=engine_connect_args(settings.database_url),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
