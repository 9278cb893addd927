"""
Health check endpoints.
"""

from fastapi import APIRouter, Depends

from immersive_audio.core.config import Settings, get_settings

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """
    System health check endpoint.

    Reports whether an output device library can be loaded; rendering and
    export work without one.
    """
    try:
        import sounddevice  # noqa: F401
        output_device = "available"
    except (ImportError, OSError):
        output_device = "unavailable"

    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.env,
        "components": {
            "offline_renderer": "available",
            "output_device": output_device
        }
    }
