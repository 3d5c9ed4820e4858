# schemas.py
from pydantic import BaseModel, Field, field_validator
from typing import Any, List, Optional

def _not_blank(v: Optional[str]) -> str:
    # explicit null on a required column is rejected like an empty string
    if v is None:
        raise ValueError("may not be null")
    if not v.strip():
        raise ValueError("may not be blank")
    return v

class QuestionCreate(BaseModel):
    question: str = Field(..., min_length=1)
    meta: Optional[Any] = None

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v):
        return _not_blank(v)

class QuestionUpdate(BaseModel):
    question: Optional[str] = Field(default=None, min_length=1)
    meta: Optional[Any] = None

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v):
        return _not_blank(v)

class SurveyCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    synopsis: Optional[str] = None
    active: Optional[bool] = None
    questions: List[str] = []     # question ids, in display order
    meta: Optional[Any] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _not_blank(v)

class SurveyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    synopsis: Optional[str] = None
    active: Optional[bool] = None
    questions: Optional[List[str]] = None   # when present, replaces the whole list
    meta: Optional[Any] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        return _not_blank(v)
