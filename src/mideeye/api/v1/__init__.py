"""Version 1 API endpoints."""

from .endpoints import questions_router, relations_router, users_router

__all__ = [
    "questions_router",
    "relations_router",
    "users_router",
]
