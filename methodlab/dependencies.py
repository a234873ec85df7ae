"""
FastAPI dependency providers.

Services are created lazily on first use so the application imports
without Gemini credentials.
"""

from functools import lru_cache

from methodlab.services.lookup_service import LookupService
from methodlab.services.session_registry import SessionRegistry


@lru_cache()
def get_session_registry() -> SessionRegistry:
    """Process-wide registry of per-session workflow coordinators."""
    return SessionRegistry()


@lru_cache()
def get_lookup_service() -> LookupService:
    """Shared lookup service."""
    return LookupService()
