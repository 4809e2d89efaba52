"""
FastAPI Application for the document cache sync engine

This API provides endpoints for:
1. Running a sync of the local cache from the authoritative store
2. The cooldown-gated manual "sync now" action and its button state
3. Running, inspecting and unlocking the retention cleanup
"""

import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Optional, Dict, Any, List
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine

from config import Config, get_config
from database import (
    AuthoritativeReader,
    CacheWriter,
    create_cache_schema,
    get_authoritative_connector,
    get_cache_connector
)
from cleanup import RetentionCleaner
from sync import (
    IN_PROGRESS,
    CooldownActive,
    Principal,
    SyncTimedOut,
    WatermarkStore,
    create_sync_trigger
)

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class StoreEngines:
    """Engines of both stores, resolved per request"""
    authoritative: Engine
    cache: Engine


def get_app_config() -> Config:
    return get_config()


def get_engines(config: Config = Depends(get_app_config)) -> StoreEngines:
    return StoreEngines(
        authoritative=get_authoritative_connector(config.authoritative).engine,
        cache=get_cache_connector(config.cache).engine
    )


def build_cleaner(engines: StoreEngines, config: Config) -> RetentionCleaner:
    cache = CacheWriter(engines.cache)
    return RetentionCleaner(
        AuthoritativeReader(engines.authoritative),
        cache,
        WatermarkStore(cache),
        config.retention
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the cache schema and run the boot-time cleanup check"""
    logger.info("🚀 Starting FastAPI application...")
    config = get_config()
    try:
        config.validate()
        engines = get_engines(config)
        create_cache_schema(engines.cache)
        result = build_cleaner(engines, config).perform_cleanup_if_due()
        logger.info(f"Boot-time cleanup check: {result.reason or result.state.value}")
    except ValueError as e:
        logger.error(f"Configuration error, skipping startup tasks: {e}")
    except Exception as e:
        # Never block startup on cleanup
        logger.error(f"Startup tasks failed: {e}", exc_info=True)
    yield
    logger.info("🛑 Shutting down FastAPI application...")
    get_authoritative_connector().close()
    get_cache_connector().close()


# Initialize FastAPI app
app = FastAPI(
    title="Document Cache Sync API",
    description="API for cache replication from the authoritative store and audit retention cleanup",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Pydantic Models ====================

class PrincipalModel(BaseModel):
    """The user a sync is performed for"""
    email: str = Field(..., description="User email, also the lock identity")
    role: str = Field(..., description="admin, zonal_head or branch")
    zone: Optional[str] = None
    branch: Optional[str] = None

    def to_principal(self) -> Principal:
        return Principal(email=self.email, role=self.role, zone=self.zone, branch=self.branch)


class SyncRequest(BaseModel):
    """Request model for a sync run"""
    principal: PrincipalModel
    full_sync: bool = Field(
        default=False,
        description="Ignore watermarks and fetch every scoped row"
    )
    tables: Optional[List[str]] = Field(
        default=None,
        description="Tables to sync in order; defaults to all five entities"
    )


class ForceSyncRequest(BaseModel):
    """Request model for the manual sync action"""
    principal: PrincipalModel


class CleanupUnlockRequest(BaseModel):
    """Request model for clearing the cleanup error lock"""
    last_cleanup: Optional[date] = Field(
        default=None,
        description="Date to record as last cleanup; omit to mark cleanup as never run"
    )


class HealthResponse(BaseModel):
    """Response model for health check"""
    status: str
    authoritative_connected: bool
    cache_connected: bool
    cleanup: Dict[str, Any]


# ==================== Helper Functions ====================

def _connected(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Connection check failed: {e}")
        return False


# ==================== API Endpoints ====================

@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Document Cache Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health", response_model=HealthResponse)
def health_check(engines: StoreEngines = Depends(get_engines),
                 config: Config = Depends(get_app_config)):
    """
    Health check endpoint

    Reports ``degraded`` when a store is unreachable or when cleanup is
    error-locked, since a locked cleanup never resumes on its own.
    """
    authoritative_connected = _connected(engines.authoritative)
    cache_connected = _connected(engines.cache)

    try:
        cleanup_status = build_cleaner(engines, config).status()
    except Exception as e:
        logger.error(f"Cleanup status check failed: {e}")
        cleanup_status = {"state": "unknown", "locked": None, "error": str(e)}

    healthy = authoritative_connected and cache_connected and cleanup_status.get("locked") is False
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        authoritative_connected=authoritative_connected,
        cache_connected=cache_connected,
        cleanup=cleanup_status
    )


@app.post("/api/sync", response_model=Dict[str, Any])
def run_sync(request: SyncRequest,
             engines: StoreEngines = Depends(get_engines),
             config: Config = Depends(get_app_config)):
    """
    Run a sync for a principal.

    Per-table failures are reported inside the result (status ``partial``).
    The request fails with 409 while another run holds one of the tables,
    and with 500 on unexpected errors.
    """
    trigger = create_sync_trigger(
        request.principal.to_principal(), engines.authoritative, engines.cache, config.sync
    )
    try:
        result = trigger.coordinator.sync_all(full_sync=request.full_sync, tables=request.tables)
    except Exception as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sync failed: {str(e)}"
        )

    if result.reason == IN_PROGRESS:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return result.to_dict()


@app.post("/api/sync/force", response_model=Dict[str, Any])
def force_sync(request: ForceSyncRequest,
               engines: StoreEngines = Depends(get_engines),
               config: Config = Depends(get_app_config)):
    """
    Manual "sync now".

    Rejected with 429 inside the cooldown window and 504 when the run
    exceeds its time budget.
    """
    trigger = create_sync_trigger(
        request.principal.to_principal(), engines.authoritative, engines.cache, config.sync
    )
    try:
        result = trigger.force_sync()
    except CooldownActive as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=e.to_dict())
    except SyncTimedOut as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    except Exception as e:
        logger.error(f"Manual sync failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sync failed: {str(e)}"
        )

    if result.reason == IN_PROGRESS:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
    return result.to_dict()


@app.get("/api/sync/status", response_model=Dict[str, Any])
def sync_status(email: str, role: str,
                zone: Optional[str] = None,
                branch: Optional[str] = None,
                engines: StoreEngines = Depends(get_engines),
                config: Config = Depends(get_app_config)):
    """State of the "sync now" button: allowed, or time left in the cooldown"""
    principal = Principal(email=email, role=role, zone=zone, branch=branch)
    trigger = create_sync_trigger(principal, engines.authoritative, engines.cache, config.sync)
    return trigger.status()


@app.post("/api/cleanup/run", response_model=Dict[str, Any])
def run_cleanup(engines: StoreEngines = Depends(get_engines),
                config: Config = Depends(get_app_config)):
    """Run the retention cleanup if it is due"""
    return build_cleaner(engines, config).perform_cleanup_if_due().to_dict()


@app.get("/api/cleanup/status", response_model=Dict[str, Any])
def cleanup_status(engines: StoreEngines = Depends(get_engines),
                   config: Config = Depends(get_app_config)):
    """Retention cleanup state, including the error lock"""
    return build_cleaner(engines, config).status()


@app.post("/api/cleanup/unlock", response_model=Dict[str, Any])
def unlock_cleanup(request: CleanupUnlockRequest,
                   engines: StoreEngines = Depends(get_engines),
                   config: Config = Depends(get_app_config)):
    """Operator action: clear the cleanup error lock"""
    cleaner = build_cleaner(engines, config)
    was_locked = cleaner.clear_lock(request.last_cleanup)
    return {
        "success": True,
        "was_locked": was_locked,
        "cleanup": cleaner.status()
    }


# ==================== Run Application ====================

if __name__ == "__main__":
    import uvicorn

    # Get port from environment or use default
    port = int(os.getenv("PORT", 8000))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        "api_main:app",
        host=host,
        port=port,
        reload=True,
        log_level="info"
    )
