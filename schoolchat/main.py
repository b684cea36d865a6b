"""
School chat service: FastAPI app with HTTP client and session lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from schoolchat.config import settings
from schoolchat.infrastructure.observability.logging import get_logger, log_request, setup_logging
from schoolchat.routes import chat, health
from schoolchat.services.api_client import school_api_client
from schoolchat.services.session_registry import session_registry

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        api_base_url=settings.API_BASE_URL,
        realtime_enabled=settings.REALTIME_ENABLED,
    )

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    # Sessions first: they may still hold realtime connections
    try:
        await session_registry.close_all()
    except Exception as e:
        logger.error("Error closing chat sessions", error=str(e))
        shutdown_errors.append(f"Sessions: {e}")

    try:
        await school_api_client.close()
    except Exception as e:
        logger.error("Error closing school API client", error=str(e))
        shutdown_errors.append(f"HTTP client: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="School Chat",
    description="Teacher, parent and principal messaging over the school API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(chat.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(request.method, request.url.path, response.status_code, round(process_time, 2))
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
