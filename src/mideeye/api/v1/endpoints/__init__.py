"""API endpoint modules for version 1."""

from .questions import router as questions_router
from .relations import router as relations_router
from .users import router as users_router

__all__ = [
    "questions_router",
    "relations_router",
    "users_router",
]
