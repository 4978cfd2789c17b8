"""
API v1 package.

Contains versioned API routes for the InSport account API.
"""

from insport_auth.api.v1.routes import router

__all__ = ["router"]
