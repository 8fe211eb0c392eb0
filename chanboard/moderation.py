"""
Password-based deletion authorization and lock enforcement.

There are no accounts: a post can be removed by whoever knows the password
given when it was created. Passwords are kept as salted hashes.
"""

from __future__ import annotations

from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from chanboard.results import ErrorKind, Result

HASH_METHOD = "pbkdf2:sha256"

# Same message for "wrong password" and "no such post" so ids can't be probed.
DENIED_MESSAGE = "Wrong password or post not found"
LOCKED_MESSAGE = "Thread is locked for replies"


def hash_password(password: Optional[str]) -> Optional[str]:
    if not password:
        return None
    return generate_password_hash(password, method=HASH_METHOD)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash or not password:
        return False
    return check_password_hash(password_hash, password)


def check_postable(thread) -> Result | None:
    """Return a ThreadLocked failure for locked threads, None otherwise."""
    if thread.is_locked:
        return Result.failure(ErrorKind.THREAD_LOCKED, LOCKED_MESSAGE)
    return None


def authorize_deletion(post, password: str) -> Result | None:
    """Return an Unauthorized failure unless ``password`` matches ``post``.

    ``post`` may be None (missing post); the failure is identical.
    """
    if post is None or not verify_password(post.password_hash, password):
        return Result.failure(ErrorKind.UNAUTHORIZED, DENIED_MESSAGE)
    return None
