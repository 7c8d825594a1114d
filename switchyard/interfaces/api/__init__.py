"""
API Interface - FastAPI REST API over the orchestrator.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]
