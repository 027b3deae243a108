"""
FastAPI application entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config import settings
from engine.transcription_manager import TranscriptionManager
from services.telegram_service import TelegramService
from utils.exceptions import AppError

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    force=True  # Override any existing config
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the engine worker and, when configured, Telegram long polling.
    """
    # === STARTUP ===
    logger.info(
        f"Whisper bot started. Queue max: {settings.max_queue}, "
        f"Audio max: {settings.max_seconds:.0f}s"
    )

    bot = TelegramService.from_settings(settings)
    manager = TranscriptionManager.from_settings(bot, settings)
    app.state.manager = manager
    await manager.start()

    poller = None
    if not settings.telegram_token:
        logger.warning("No telegram_token configured; only the HTTP API is available")
    elif settings.telegram_polling:
        poller = asyncio.create_task(bot.poll(manager.dispatch))

    logger.info("Application ready")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down...")
    if poller:
        poller.cancel()
        try:
            await poller
        except asyncio.CancelledError:
            pass
    await manager.stop()
    await bot.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Voice note transcription bot backed by whisper.cpp",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    """Global handler for custom application errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": type(exc).__name__}
    )

# Include routers
from routers import system, telegram  # noqa: E402
app.include_router(system.router, prefix="/api/system", tags=["System"])
app.include_router(telegram.router, prefix="/api/telegram", tags=["Telegram"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    manager: TranscriptionManager = app.state.manager
    return {
        "status": "healthy",
        "app": settings.app_name,
        "queue_depth": manager.queue.depth,
        "worker_running": manager.queue.is_running
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
