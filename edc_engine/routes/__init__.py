"""Routes package for FastAPI endpoints.

This package contains all API route modules for the EDC form engine.
"""

from edc_engine.routes import authoring, forms, health, responses

__all__ = ["authoring", "forms", "health", "responses"]
