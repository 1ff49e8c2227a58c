from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutor_match.middleware.error_handlers import (
    ExceptionHandlerMiddleware,
    HealthCheckMiddleware,
    PerformanceMiddleware,
    RequestLoggingMiddleware,
)
from tutor_match.routers import ai, matches
from tutor_match.utils.logging_config import configure_for_environment, get_logger

# Configure logging first
configure_for_environment()
logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager"""
    logger.info("Tutor Matching API starting up...")

    try:
        from tutor_match.services.db import init_indexes
        await init_indexes()
        logger.info("Database indexes initialized successfully")
    except Exception as e:
        logger.warning(f"Database index initialization had issues: {e}")
        logger.info("Application will continue - candidate retrieval may be slower without indexes")

    yield

    logger.info("Tutor Matching API shutting down...")


app = FastAPI(title="Tutor Matching API", version=VERSION, lifespan=lifespan)

# The last middleware added runs first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(PerformanceMiddleware, slow_request_threshold=2.0)
app.add_middleware(ExceptionHandlerMiddleware)
app.add_middleware(HealthCheckMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.head("/")
async def root():
    """Root endpoint - handles both GET and HEAD requests"""
    return {"message": "Welcome to the Tutor Matching API", "version": VERSION, "status": "ok"}


@app.get("/health")
@app.head("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.utcnow().isoformat() + "Z"}


app.include_router(matches.router)
app.include_router(ai.router)

logger.info("Tutor Matching API initialized successfully")
