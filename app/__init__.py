"""
Temporal Memory Graph - FastAPI Application.

Provides REST API endpoints for recording messages, following their
enrichment, searching memory and viewing the graph.
"""

from app.config import Settings, get_settings

__all__ = [
    "get_settings",
    "Settings",
]
