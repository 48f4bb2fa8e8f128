"""
Data Accuracy API

FastAPI application serving the accuracy endpoints.

Run locally:
    uvicorn api.main:app --reload
"""

import logging
import sys
from datetime import datetime, timezone

from fastapi import FastAPI

from src import __version__
from src.database import check_db_connection, init_db
from src.utils.config import get_settings

from api.accuracy import router as accuracy_router

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="SEO Data Accuracy Engine",
    description="Confidence scoring, discrepancy detection and accuracy alerts for SEO metrics",
    version=__version__,
)

app.include_router(accuracy_router)


# ============================================================================
# STARTUP - Initialize Database
# ============================================================================

@app.on_event("startup")
def startup_event():
    """Initialize database on startup."""
    logger.info("Initializing database...")
    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "SEO Data Accuracy Engine"}


@app.get("/api/health")
def health():
    """Detailed health check including database status."""
    db_connected = check_db_connection()
    return {
        "status": "healthy" if db_connected else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "environment": get_settings().ENVIRONMENT,
        "database": "connected" if db_connected else "disconnected",
    }


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
