from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db.session import SessionLocal
from app.services.allocation import AllocationService


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_allocation_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AllocationService:
    return AllocationService(db, settings)
