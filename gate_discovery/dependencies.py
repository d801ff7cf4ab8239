"""
FastAPI dependencies for the Gate Discovery service
"""
from typing import Generator, Optional
from fastapi import HTTPException, Header, status
from sqlalchemy.orm import Session
from gate_discovery.db.database import SessionLocal
from gate_discovery.config import settings


def get_db() -> Generator[Session, None, None]:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> Optional[str]:
    """Verify API key for write endpoints; open when no API_KEY is configured"""
    if not settings.API_KEY:
        return x_api_key
    if not x_api_key or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
    return x_api_key
