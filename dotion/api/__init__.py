"""
HTTP API Module for Dotion.

Components:
- app: FastAPI application factory
- routes: chat, calendar, Google sign-in and desktop endpoints
- models: request/response schemas
"""

from .app import create_app, run_api_server

__all__ = [
    "create_app",
    "run_api_server",
]
