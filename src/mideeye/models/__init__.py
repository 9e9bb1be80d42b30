"""SQLAlchemy models for the Mideeye application."""

from .follow import UserFollow
from .profile import Profile
from .question import Answer, Question
from .saved_post import SavedPost
from .vote import Vote

__all__ = [
    "Answer",
    "Profile",
    "Question",
    "SavedPost",
    "UserFollow",
    "Vote",
]
