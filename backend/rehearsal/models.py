from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class InterviewRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    category: str = Field(default="general")
    total_questions: int
    overall_score: Optional[int] = Field(default=None)
    improved: Optional[bool] = Field(default=None)  # None only for a user's first interview
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class InterviewItemRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    interview_id: int = Field(foreign_key="interviewrecord.id", index=True)
    question_idx: int
    question: str
    expected_answer: str = Field(default="")
    answer: str = Field(default="")
    score: int
    tier: str
    feedback: str


class KeyValueRecord(SQLModel, table=True):
    key: str = Field(primary_key=True)
    payload: str  # JSON document
    updated_at: datetime = Field(default_factory=datetime.utcnow)
