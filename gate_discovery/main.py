"""
Main FastAPI application for the Gate Discovery service
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from gate_discovery import __version__
from gate_discovery.config import settings
from gate_discovery.api import (
    system,
    checkin,
    gates,
    thresholds
)
from gate_discovery.db.database import init_db
from gate_discovery.engine.errors import InputError

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.APP_DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Gate Discovery service...")
    try:
        init_db()
        logger.info("Database tables ready")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
    
    yield
    
    # Shutdown
    logger.info("Shutting down Gate Discovery service...")


app = FastAPI(
    title="Gate Discovery Service",
    description="Infers event entry gates from check-in data",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Include routers
app.include_router(system.router, tags=["System"])
app.include_router(checkin.router)
app.include_router(gates.router)
app.include_router(thresholds.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": "Gate Discovery",
        "version": __version__,
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gate_discovery.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.APP_DEBUG
    )
