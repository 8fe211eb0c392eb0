"""
Forum operations: boards, bump-ordered threads, posts and deletion.

Every operation takes the storage client explicitly and returns a Result;
storage failures are logged here and reported as a generic server error.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Optional

from chanboard.db import (
    THREAD_POST_LIMIT,
    BoardRecord,
    DbClient,
    PostRecord,
    StorageError,
    ThreadRecord,
)
from chanboard.moderation import (
    LOCKED_MESSAGE,
    authorize_deletion,
    check_postable,
    hash_password,
)
from chanboard.ranking import BOARD_THREAD_LIMIT
from chanboard.ratelimit import RateLimiter
from chanboard.results import ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Anonymous"
MIN_THREAD_TEXT = 5
MIN_POST_TEXT = 1
RECENT_POSTS_DEFAULT = 15
RECENT_POSTS_MAX = 100

UNKNOWN_BOARD = {"code": "unknown", "name": "Unknown board"}


@dataclass
class NewThread:
    board: str
    text: Optional[str]
    subject: Optional[str] = None
    name: Optional[str] = None
    password: Optional[str] = None
    image_url: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class NewPost:
    thread_id: int
    text: Optional[str]
    name: Optional[str] = None
    password: Optional[str] = None
    image_url: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class BoardPage:
    board: BoardRecord
    threads: list[ThreadRecord]

    def as_dict(self) -> dict:
        return {
            "board": self.board.as_dict(),
            "threads": [thread.as_dict() for thread in self.threads],
        }


@dataclass
class ThreadPage:
    thread: ThreadRecord
    posts: list[PostRecord]
    board: Optional[BoardRecord]

    def as_dict(self) -> dict:
        return {
            "thread": self.thread.as_dict(),
            "posts": [post.as_dict() for post in self.posts],
            "board": self.board.as_dict() if self.board else dict(UNKNOWN_BOARD),
        }


def _storage_guard(action: str):
    """Turn StorageError into a STORAGE failure, logging the details."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except StorageError:
                logger.exception("Storage failure while trying to %s", action)
                return Result.failure(ErrorKind.STORAGE, "Server error")

        return wrapper

    return decorator


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def admit(limiter: RateLimiter, caller: str) -> Result | None:
    """Fixed-window admission check; run before any mutation touches storage."""
    if limiter.consume(caller):
        return None
    logger.info("Rate limit exceeded for %s", caller)
    return Result.failure(
        ErrorKind.RATE_LIMITED, "Too many requests. Please wait a moment."
    )


@_storage_guard("list boards")
def list_boards(db: DbClient) -> Result:
    return Result.success(db.list_boards())


@_storage_guard("load board")
def get_board(db: DbClient, code: str) -> Result:
    board = db.get_board_by_code(code)
    if board is None:
        return Result.failure(ErrorKind.NOT_FOUND, "Board not found")
    threads = db.list_board_threads(board.id, limit=BOARD_THREAD_LIMIT)
    return Result.success(BoardPage(board=board, threads=threads))


@_storage_guard("load thread")
def get_thread(db: DbClient, thread_id: int) -> Result:
    thread = db.get_thread(thread_id)
    if thread is None:
        return Result.failure(ErrorKind.NOT_FOUND, "Thread not found")
    posts = db.list_thread_posts(thread.id, limit=THREAD_POST_LIMIT)
    board = db.get_board(thread.board_id)
    return Result.success(ThreadPage(thread=thread, posts=posts, board=board))


@_storage_guard("create thread")
def create_thread(db: DbClient, draft: NewThread) -> Result:
    text = (draft.text or "").strip()
    if len(text) < MIN_THREAD_TEXT:
        return Result.failure(
            ErrorKind.VALIDATION,
            f"Text must be at least {MIN_THREAD_TEXT} characters",
        )
    board = db.get_board_by_code(draft.board) if draft.board else None
    if board is None:
        return Result.failure(ErrorKind.NOT_FOUND, "Board not found")

    thread_id = db.insert_thread(
        board.id,
        subject=_clean(draft.subject),
        name=_clean(draft.name) or DEFAULT_NAME,
        text=text,
        password_hash=hash_password(draft.password),
        image_url=_clean(draft.image_url),
        ip_address=draft.ip_address or "unknown",
    )
    logger.info("Created thread %s on /%s/", thread_id, board.code)
    return Result.success(
        {"threadId": thread_id, "board": board.code}, message="Thread created"
    )


@_storage_guard("create post")
def create_post(db: DbClient, draft: NewPost) -> Result:
    text = (draft.text or "").strip()
    if len(text) < MIN_POST_TEXT:
        return Result.failure(ErrorKind.VALIDATION, "Post text is required")

    thread = db.get_thread(draft.thread_id)
    if thread is None:
        return Result.failure(ErrorKind.NOT_FOUND, "Thread not found")
    locked = check_postable(thread)
    if locked:
        return locked

    post_id = db.add_post_and_bump(
        thread.id,
        name=_clean(draft.name) or DEFAULT_NAME,
        text=text,
        password_hash=hash_password(draft.password),
        image_url=_clean(draft.image_url),
        ip_address=draft.ip_address or "unknown",
    )
    if post_id is None:
        # Locked after the read above; threads are never deleted.
        return Result.failure(ErrorKind.THREAD_LOCKED, LOCKED_MESSAGE)
    logger.info("Created post %s in thread %s", post_id, thread.id)
    return Result.success({"postId": post_id}, message="Post added")


@_storage_guard("delete post")
def delete_post(db: DbClient, post_id: int, password: Optional[str]) -> Result:
    if not password:
        return Result.failure(ErrorKind.VALIDATION, "Password is required")

    post = db.find_post_for_deletion(post_id)
    denied = authorize_deletion(post, password)
    if denied:
        return denied
    if db.delete_post(post.id) == 0:
        # Removed by a concurrent request between lookup and delete.
        return authorize_deletion(None, password)
    logger.info("Deleted post %s", post.id)
    return Result.success(message="Post deleted")


@_storage_guard("list recent posts")
def list_recent_posts(db: DbClient, limit: Optional[int] = None) -> Result:
    if not limit or limit < 1:
        limit = RECENT_POSTS_DEFAULT
    return Result.success(db.list_recent_posts(min(limit, RECENT_POSTS_MAX)))


@_storage_guard("load stats")
def get_stats(db: DbClient) -> Result:
    return Result.success(db.count_stats())
