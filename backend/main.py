"""
FastAPI Main Application
Marketplace sync orchestration backend
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.services import SyncServices, build_services
from config.settings import settings
from utils.exceptions import SyncError
from utils.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the FastAPI application."""
    services: SyncServices = app.state.services

    logger.info(f"🚀 Starting {settings.APP_NAME}...")
    await services.start()
    logger.info("✅ Schedule registry started")

    yield

    logger.info(f"🛑 Shutting down {settings.APP_NAME}...")
    try:
        await services.stop()
        logger.info("✅ Sync services stopped")
    except Exception as e:
        logger.error(f"❌ Sync services shutdown failed: {e}")


async def sync_error_handler(request: Request, exc: SyncError):
    if exc.status_code >= 500:
        logger.error(f"Unhandled sync error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


def create_app(services: Optional[SyncServices] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Schedules, dispatches and tracks catalog syncs to marketplaces",
        version=settings.VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services or build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SyncError, sync_error_handler)

    from routers import scheduling, sync

    app.include_router(scheduling.router)
    app.include_router(sync.router)

    @app.websocket("/ws/sync")
    async def websocket_sync(websocket: WebSocket, tenant_id: str):
        """Push sync events of one tenant as they are appended"""
        connection_manager = app.state.services.connection_manager

        try:
            await connection_manager.connect(websocket, tenant_id)

            while True:
                try:
                    data = await websocket.receive_text()
                    logger.debug(f"Received sync message: {data}")
                except WebSocketDisconnect:
                    break

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"Sync WebSocket error: {e}")
        finally:
            await connection_manager.disconnect(websocket)

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "operational",
            "endpoints": {
                "docs": "/docs",
                "scheduling_api": "/api/scheduling",
                "sync_api": "/api/sync",
            },
            "websockets": {
                "sync": "/ws/sync?tenant_id=<tenant>",
            },
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        services: SyncServices = app.state.services
        registry = services.registry
        try:
            stats = await registry.get_stats()
            return {
                "status": "healthy" if registry.is_running else "degraded",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "services": {
                    "scheduler": {
                        "running": registry.is_running,
                        "total_schedules": stats["total_schedules"],
                        "active_timers": stats["active_timers"],
                    },
                    "websockets": {
                        "connections": services.connection_manager.get_connection_count(),
                    },
                },
                "version": settings.VERSION,
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL,
    )
