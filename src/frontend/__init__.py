"""
Front-end module: HTTP request layer, configuration and entry point.
"""

from .api import create_app
from .config import Backend, ServerConfig

__all__ = ["create_app", "Backend", "ServerConfig"]
