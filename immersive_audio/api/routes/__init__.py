"""
API route modules.
"""

from immersive_audio.api.routes import audio, health

__all__ = ["audio", "health"]
