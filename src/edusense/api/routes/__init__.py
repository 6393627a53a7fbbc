"""API route modules."""

from . import ask, doubts, health, media

__all__ = ["ask", "doubts", "health", "media"]
