"""
System Router - Health checks
"""
from fastapi import APIRouter, Depends
from datetime import datetime
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session
from gate_discovery.config import settings
from gate_discovery.dependencies import get_db

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Status of the database, Redis and the worker queue."""
    database_status = "unhealthy"
    try:
        db.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception:
        pass
    
    redis_status = "unhealthy"
    worker_queue_depth = 0
    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        r.ping()
        redis_status = "healthy"
        worker_queue_depth = r.llen("gate_discovery") or 0
    except Exception:
        pass
    
    return {
        "database": database_status,
        "redis": redis_status,
        "lock_backend": settings.LOCK_BACKEND,
        "worker_queue_depth": worker_queue_depth,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
