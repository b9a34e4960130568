"""Pydantic schemas for the exam webhook API."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from exam.types import ExamAnswerResult, UserIdentity


class StartExamReq(BaseModel):
    group_chat_id: int
    dm_chat_id: int
    user: UserIdentity
    chat_title: Optional[str] = None


class CallbackReq(BaseModel):
    data: str
    user: UserIdentity
    message_chat_id: Optional[int] = None
    message_id: Optional[int] = None


class OpenEndedReq(BaseModel):
    user: UserIdentity
    text: str = Field(min_length=1)
    chat_id: Optional[int] = None


class AnswerResp(BaseModel):
    ignored: bool = False
    result: Optional[ExamAnswerResult] = None


__all__ = ["StartExamReq", "CallbackReq", "OpenEndedReq", "AnswerResp"]
