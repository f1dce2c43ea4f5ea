"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from delivery_engine.config import get_settings
from delivery_engine.engine.session import SessionRegistry
from delivery_engine.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    app.state.sessions = SessionRegistry()
    logger.info("session_registry_initialized")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await manager.close_all()
    await app.state.sessions.close_all()


# Create FastAPI app
app = FastAPI(
    title="Delivery Task Lifecycle Engine",
    description="Delivery task lifecycle with a local mirror and a remote task gateway",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "delivery-engine"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "Delivery Task Lifecycle Engine API",
        "docs": "/docs",
        "health": "/health",
    }


# Import and include routers
from delivery_engine.api.routes import router
from delivery_engine.api.websocket import handle_delivery_socket, manager

app.include_router(router, prefix="/api/v1", tags=["delivery"])


# WebSocket endpoint
@app.websocket("/ws/delivery/{actor_id}")
async def websocket_endpoint(websocket: WebSocket, actor_id: str) -> None:
    """WebSocket endpoint for live lifecycle events."""
    await handle_delivery_socket(websocket, actor_id, websocket.app.state.sessions)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "delivery_engine.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
