"""
Pydantic schemas for the forum API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

# Largest id a 64-bit signed INTEGER column can hold.
MAX_ID = 2**63 - 1


class CreateThreadRequest(BaseModel):
    board: str = Field(..., max_length=16)
    subject: Optional[str] = Field(default=None, max_length=200)
    name: Optional[str] = Field(default=None, max_length=100)
    text: Optional[str] = Field(default=None, max_length=10000)
    password: Optional[str] = Field(default=None, max_length=128)
    image_url: Optional[str] = Field(default=None, max_length=2048)


class CreatePostRequest(BaseModel):
    thread_id: int = Field(..., gt=0, le=MAX_ID)
    name: Optional[str] = Field(default=None, max_length=100)
    text: Optional[str] = Field(default=None, max_length=10000)
    password: Optional[str] = Field(default=None, max_length=128)
    image_url: Optional[str] = Field(default=None, max_length=2048)


class DeletePostRequest(BaseModel):
    post_id: int = Field(..., gt=0, le=MAX_ID)
    password: Optional[str] = Field(default=None, max_length=128)


class BoardOut(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    created_at: datetime


class UnknownBoardOut(BaseModel):
    code: str
    name: str


class ThreadOut(BaseModel):
    id: int
    board_id: int
    subject: Optional[str] = None
    name: str
    text: str
    image_url: Optional[str] = None
    bump_time: datetime
    created_at: datetime
    reply_count: int
    is_sticky: bool
    is_locked: bool


class PostOut(BaseModel):
    id: int
    thread_id: int
    name: str
    text: str
    image_url: Optional[str] = None
    created_at: datetime


class RecentPostOut(PostOut):
    board_code: str
    thread_subject: Optional[str] = None


class StatsOut(BaseModel):
    total_threads: int
    total_posts: int
    total_boards: int


class BoardPageOut(BaseModel):
    board: BoardOut
    threads: list[ThreadOut]


class ThreadPageOut(BaseModel):
    thread: ThreadOut
    posts: list[PostOut]
    board: BoardOut | UnknownBoardOut


class BoardListResponse(BaseModel):
    success: Literal[True] = True
    data: list[BoardOut]


class BoardPageResponse(BaseModel):
    success: Literal[True] = True
    data: BoardPageOut


class ThreadPageResponse(BaseModel):
    success: Literal[True] = True
    data: ThreadPageOut


class CreateThreadResponse(BaseModel):
    success: Literal[True] = True
    message: str
    threadId: int
    board: str


class CreatePostResponse(BaseModel):
    success: Literal[True] = True
    message: str
    postId: int


class DeletePostResponse(BaseModel):
    success: Literal[True] = True
    message: str


class RecentPostsResponse(BaseModel):
    success: Literal[True] = True
    data: list[RecentPostOut]


class StatsResponse(BaseModel):
    success: Literal[True] = True
    data: StatsOut


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    environment: str


class ErrorResponse(BaseModel):
    error: str
