from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from ..config import SessionLocal
from ..services.context import ServiceContext, build_context


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_context(db: Session = Depends(get_db)) -> ServiceContext:
    return build_context(db)
