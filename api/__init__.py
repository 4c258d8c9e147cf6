"""HTTP API for the watch history archive"""

from api.routes import router

__all__ = ["router"]
