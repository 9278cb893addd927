"""
FastAPI application exposing offline rendering and export.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from immersive_audio.api.routes import audio, health
from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import ImmersiveAudioError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        env=settings.env
    )

    yield

    logger.info("application_shutting_down")


app = FastAPI(
    title="Immersive Audio API",
    description="Speech decoding, reverb and 8D panning, WAV export",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ImmersiveAudioError)
async def immersive_audio_error_handler(request, exc: ImmersiveAudioError) -> JSONResponse:
    """Handle domain errors."""
    logger.error(
        "immersive_audio_error",
        error_code=exc.code,
        message=exc.message,
        path=request.url.path
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message
            }
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception) -> JSONResponse:
    """Handle unexpected errors."""
    logger.exception(
        "unexpected_error",
        error_type=type(exc).__name__,
        path=request.url.path
    )

    message = str(exc) if settings.is_development else "An unexpected error occurred"
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": message
            }
        }
    )


app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(audio.router, prefix="/api/v1/audio", tags=["audio"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "environment": settings.env,
        "docs": "/docs",
        "api": {
            "health": "/api/v1/health",
            "render": "/api/v1/audio/render",
            "pan_curve": "/api/v1/audio/pan-curve"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "immersive_audio.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
