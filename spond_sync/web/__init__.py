"""
spond_sync.web - HTTP surface

FastAPI application factory, bearer-token authentication and the
``/api/spond`` routes.
"""

from spond_sync.web.app import create_app

__all__ = ["create_app"]
