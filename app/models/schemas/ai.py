"""
Schemas for the AI advisor / tutor chat endpoints.
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    history: List[ChatTurn] = Field(default_factory=list, max_length=50)
    course_id: Optional[int] = Field(None, gt=0, description="Course the question is about (tutor)")
    lesson_id: Optional[int] = Field(None, gt=0)


class ChatReply(BaseModel):
    reply: str
    model: str
