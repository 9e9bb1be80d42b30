"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .common import Err, Ok, ServiceResult
from .question import AnswerCreate, AnswerNodeResponse, AnswerRecord, QuestionCreate, QuestionResponse
from .relations import RelationEdge, RelationKind, parse_relation_row
from .user import UserStats

__all__ = [
    "Err", "Ok", "ServiceResult",
    "AnswerCreate", "AnswerNodeResponse", "AnswerRecord", "QuestionCreate", "QuestionResponse",
    "RelationEdge", "RelationKind", "parse_relation_row",
    "UserStats",
]
