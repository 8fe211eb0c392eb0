"""
Database abstraction for SQL backends and an in-memory test implementation.
"""

from __future__ import annotations

import enum
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    case,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from chanboard.ranking import BOARD_THREAD_LIMIT, next_bump_time, order_board_threads
from chanboard.seed import BoardSeed

THREAD_POST_LIMIT = 100


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StorageErrorKind(enum.Enum):
    CONNECTIVITY = "connectivity"
    CONSTRAINT = "constraint"
    MALFORMED = "malformed"


class StorageError(Exception):
    """Raised by storage clients for driver, connectivity or constraint failures."""

    def __init__(self, kind: StorageErrorKind, detail: str = ""):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


@dataclass
class BoardRecord:
    id: int
    code: str
    name: str
    description: Optional[str]
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ThreadRecord:
    id: int
    board_id: int
    subject: Optional[str]
    name: str
    text: str
    password_hash: Optional[str]
    image_url: Optional[str]
    ip_address: Optional[str]
    bump_time: datetime
    created_at: datetime
    reply_count: int = 0
    is_sticky: bool = False
    is_locked: bool = False

    def as_dict(self) -> dict:
        # password_hash and ip_address are never serialized.
        return {
            "id": self.id,
            "board_id": self.board_id,
            "subject": self.subject,
            "name": self.name,
            "text": self.text,
            "image_url": self.image_url,
            "bump_time": self.bump_time.isoformat(),
            "created_at": self.created_at.isoformat(),
            "reply_count": self.reply_count,
            "is_sticky": bool(self.is_sticky),
            "is_locked": bool(self.is_locked),
        }


@dataclass
class PostRecord:
    id: int
    thread_id: int
    name: str
    text: str
    password_hash: Optional[str]
    image_url: Optional[str]
    ip_address: Optional[str]
    created_at: datetime

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "name": self.name,
            "text": self.text,
            "image_url": self.image_url,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RecentPostRecord(PostRecord):
    board_code: str
    thread_subject: Optional[str]

    def as_dict(self) -> dict:
        payload = super().as_dict()
        payload["board_code"] = self.board_code
        payload["thread_subject"] = self.thread_subject
        return payload


@dataclass
class StatsRecord:
    total_threads: int
    total_posts: int
    total_boards: int

    def as_dict(self) -> dict:
        return {
            "total_threads": self.total_threads,
            "total_posts": self.total_posts,
            "total_boards": self.total_boards,
        }


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a single mutation. ``lastrowid`` is set for inserts only."""

    rowcount: int
    lastrowid: Optional[int] = None


class DbClient(Protocol):
    """Interface for forum storage."""

    def init_schema(self) -> None:
        ...

    def seed_boards(self, boards: Iterable[BoardSeed]) -> int:
        ...

    def list_boards(self) -> list[BoardRecord]:
        ...

    def get_board(self, board_id: int) -> Optional[BoardRecord]:
        ...

    def get_board_by_code(self, code: str) -> Optional[BoardRecord]:
        ...

    def list_board_threads(
        self, board_id: int, limit: int = BOARD_THREAD_LIMIT
    ) -> list[ThreadRecord]:
        ...

    def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        ...

    def list_thread_posts(
        self, thread_id: int, limit: int = THREAD_POST_LIMIT
    ) -> list[PostRecord]:
        ...

    def insert_thread(
        self,
        board_id: int,
        *,
        subject: Optional[str],
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> int:
        ...

    def add_post_and_bump(
        self,
        thread_id: int,
        *,
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> Optional[int]:
        """Returns None, writing nothing, if the thread is missing or locked."""
        ...

    def find_post_for_deletion(self, post_id: int) -> Optional[PostRecord]:
        ...

    def delete_post(self, post_id: int) -> int:
        ...

    def list_recent_posts(self, limit: int) -> list[RecentPostRecord]:
        ...

    def count_stats(self) -> StatsRecord:
        ...

    def set_thread_flags(
        self,
        thread_id: int,
        *,
        is_sticky: Optional[bool] = None,
        is_locked: Optional[bool] = None,
    ) -> int:
        ...

    def close(self) -> None:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._lock = threading.Lock()
        self.boards: dict[int, BoardRecord] = {}
        self.threads: dict[int, ThreadRecord] = {}
        self.posts: dict[int, PostRecord] = {}
        self._next_ids = {"boards": 1, "threads": 1, "posts": 1}

    def _next_id(self, table: str) -> int:
        value = self._next_ids[table]
        self._next_ids[table] = value + 1
        return value

    def init_schema(self) -> None:
        return None

    def seed_boards(self, boards: Iterable[BoardSeed]) -> int:
        inserted = 0
        with self._lock:
            existing = {board.code for board in self.boards.values()}
            for seed in boards:
                if seed.code in existing:
                    continue
                board_id = self._next_id("boards")
                self.boards[board_id] = BoardRecord(
                    id=board_id,
                    code=seed.code,
                    name=seed.name,
                    description=seed.description,
                    created_at=self.clock(),
                )
                existing.add(seed.code)
                inserted += 1
        return inserted

    def list_boards(self) -> list[BoardRecord]:
        return [replace(self.boards[key]) for key in sorted(self.boards)]

    def get_board(self, board_id: int) -> Optional[BoardRecord]:
        board = self.boards.get(board_id)
        return replace(board) if board else None

    def get_board_by_code(self, code: str) -> Optional[BoardRecord]:
        for board in self.boards.values():
            if board.code == code:
                return replace(board)
        return None

    def list_board_threads(
        self, board_id: int, limit: int = BOARD_THREAD_LIMIT
    ) -> list[ThreadRecord]:
        with self._lock:
            candidates = [
                replace(thread)
                for thread in self.threads.values()
                if thread.board_id == board_id
            ]
        return order_board_threads(candidates, limit=limit)

    def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        thread = self.threads.get(thread_id)
        return replace(thread) if thread else None

    def list_thread_posts(
        self, thread_id: int, limit: int = THREAD_POST_LIMIT
    ) -> list[PostRecord]:
        with self._lock:
            posts = [p for p in self.posts.values() if p.thread_id == thread_id]
        posts.sort(key=lambda p: (p.created_at, p.id))
        return [replace(p) for p in posts[:limit]]

    def insert_thread(
        self,
        board_id: int,
        *,
        subject: Optional[str],
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> int:
        with self._lock:
            if board_id not in self.boards:
                raise StorageError(
                    StorageErrorKind.CONSTRAINT, f"board {board_id} does not exist"
                )
            now = self.clock()
            thread_id = self._next_id("threads")
            self.threads[thread_id] = ThreadRecord(
                id=thread_id,
                board_id=board_id,
                subject=subject,
                name=name,
                text=text,
                password_hash=password_hash,
                image_url=image_url,
                ip_address=ip_address,
                bump_time=now,
                created_at=now,
            )
            return thread_id

    def add_post_and_bump(
        self,
        thread_id: int,
        *,
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> Optional[int]:
        with self._lock:
            thread = self.threads.get(thread_id)
            if thread is None or thread.is_locked:
                return None
            now = self.clock()
            post_id = self._next_id("posts")
            self.posts[post_id] = PostRecord(
                id=post_id,
                thread_id=thread_id,
                name=name,
                text=text,
                password_hash=password_hash,
                image_url=image_url,
                ip_address=ip_address,
                created_at=now,
            )
            thread.bump_time = next_bump_time(thread.bump_time, now)
            thread.reply_count += 1
            return post_id

    def find_post_for_deletion(self, post_id: int) -> Optional[PostRecord]:
        post = self.posts.get(post_id)
        return replace(post) if post else None

    def delete_post(self, post_id: int) -> int:
        with self._lock:
            return 1 if self.posts.pop(post_id, None) else 0

    def list_recent_posts(self, limit: int) -> list[RecentPostRecord]:
        with self._lock:
            posts = sorted(
                self.posts.values(), key=lambda p: (p.created_at, p.id), reverse=True
            )
            results: list[RecentPostRecord] = []
            for post in posts:
                thread = self.threads.get(post.thread_id)
                board = self.boards.get(thread.board_id) if thread else None
                if thread is None or board is None:
                    continue
                results.append(
                    RecentPostRecord(
                        **vars(replace(post)),
                        board_code=board.code,
                        thread_subject=thread.subject,
                    )
                )
                if len(results) >= limit:
                    break
            return results

    def count_stats(self) -> StatsRecord:
        return StatsRecord(
            total_threads=len(self.threads),
            total_posts=len(self.posts),
            total_boards=len(self.boards),
        )

    def set_thread_flags(
        self,
        thread_id: int,
        *,
        is_sticky: Optional[bool] = None,
        is_locked: Optional[bool] = None,
    ) -> int:
        with self._lock:
            thread = self.threads.get(thread_id)
            if thread is None:
                return 0
            if is_sticky is not None:
                thread.is_sticky = is_sticky
            if is_locked is not None:
                thread.is_locked = is_locked
            return 1

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.boards.clear()
            self.threads.clear()
            self.posts.clear()
            self._next_ids = {"boards": 1, "threads": 1, "posts": 1}

    def close(self) -> None:
        return None


@contextmanager
def _storage_errors():
    """Translate SQLAlchemy failures into StorageError."""
    try:
        yield
    except IntegrityError as exc:
        raise StorageError(StorageErrorKind.CONSTRAINT, str(exc.orig)) from exc
    except (OperationalError, InterfaceError) as exc:
        raise StorageError(StorageErrorKind.CONNECTIVITY, str(exc.orig)) from exc
    except DBAPIError as exc:
        raise StorageError(StorageErrorKind.MALFORMED, str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StorageError(StorageErrorKind.MALFORMED, str(exc)) from exc


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (SQLite by
    default, Postgres in larger deployments).
    """

    def __init__(
        self,
        database_url: str,
        *,
        clock: Callable[[], datetime] = utcnow,
        create_schema: bool = True,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.clock = clock
        self.database_url = database_url
        url = make_url(database_url)
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        shared_connection = False
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every thread sees its own empty db.
                engine_kwargs["poolclass"] = StaticPool
                shared_connection = True
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        # Transactions on a shared connection would interleave across threads.
        self._connection_lock = threading.RLock() if shared_connection else None

        if url.get_backend_name() == "sqlite":

            @event.listens_for(self.engine, "connect")
            def _enable_foreign_keys(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_schema:
            self.init_schema()

    # ------------------------------------------------------------------
    # Statement primitives
    # ------------------------------------------------------------------

    def _serialized(self):
        return self._connection_lock or nullcontext()

    def fetch_all(self, statement) -> list:
        with _storage_errors(), self._serialized(), self.Session() as session:
            return list(session.execute(statement).all())

    def fetch_one(self, statement):
        with _storage_errors(), self._serialized(), self.Session() as session:
            return session.execute(statement).first()

    def execute(self, statement, session: Session | None = None) -> ExecuteResult:
        """Run one mutation; joins ``session``'s transaction when given."""
        if session is None:
            with _storage_errors(), self._serialized():
                with self.Session.begin() as own_session:
                    return self._execute(own_session, statement)
        with _storage_errors():
            return self._execute(session, statement)

    @staticmethod
    def _execute(session: Session, statement) -> ExecuteResult:
        result = session.execute(statement)
        lastrowid = None
        if result.is_insert and result.inserted_primary_key:
            lastrowid = result.inserted_primary_key[0]
        return ExecuteResult(rowcount=result.rowcount, lastrowid=lastrowid)

    # ------------------------------------------------------------------
    # Schema and seed
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        with _storage_errors(), self._serialized():
            Base.metadata.create_all(self.engine)

    def seed_boards(self, boards: Iterable[BoardSeed]) -> int:
        inserted = 0
        with _storage_errors(), self._serialized(), self.Session.begin() as session:
            existing = set(session.execute(select(boards_table.c.code)).scalars())
            for seed in boards:
                if seed.code in existing:
                    continue
                self.execute(
                    insert(boards_table).values(
                        code=seed.code,
                        name=seed.name,
                        description=seed.description,
                        created_at=self.clock(),
                    ),
                    session=session,
                )
                existing.add(seed.code)
                inserted += 1
        return inserted

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    def list_boards(self) -> list[BoardRecord]:
        rows = self.fetch_all(select(boards_table).order_by(boards_table.c.id))
        return [BoardRecord(**row._mapping) for row in rows]

    def get_board(self, board_id: int) -> Optional[BoardRecord]:
        row = self.fetch_one(select(boards_table).where(boards_table.c.id == board_id))
        return BoardRecord(**row._mapping) if row else None

    def get_board_by_code(self, code: str) -> Optional[BoardRecord]:
        row = self.fetch_one(select(boards_table).where(boards_table.c.code == code))
        return BoardRecord(**row._mapping) if row else None

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def list_board_threads(
        self, board_id: int, limit: int = BOARD_THREAD_LIMIT
    ) -> list[ThreadRecord]:
        t = threads_table
        sticky = self.fetch_all(
            select(t)
            .where(t.c.board_id == board_id, t.c.is_sticky.is_(True))
            .order_by(t.c.created_at.desc(), t.c.id.desc())
        )
        bumped = self.fetch_all(
            select(t)
            .where(t.c.board_id == board_id, t.c.is_sticky.is_(False))
            .order_by(t.c.bump_time.desc(), t.c.id.desc())
            .limit(limit)
        )
        return [ThreadRecord(**row._mapping) for row in [*sticky, *bumped]]

    def get_thread(self, thread_id: int) -> Optional[ThreadRecord]:
        row = self.fetch_one(
            select(threads_table).where(threads_table.c.id == thread_id)
        )
        return ThreadRecord(**row._mapping) if row else None

    def insert_thread(
        self,
        board_id: int,
        *,
        subject: Optional[str],
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> int:
        now = self.clock()
        result = self.execute(
            insert(threads_table).values(
                board_id=board_id,
                subject=subject,
                name=name,
                text=text,
                password_hash=password_hash,
                image_url=image_url,
                ip_address=ip_address,
                bump_time=now,
                created_at=now,
                reply_count=0,
                is_sticky=False,
                is_locked=False,
            )
        )
        return result.lastrowid

    def set_thread_flags(
        self,
        thread_id: int,
        *,
        is_sticky: Optional[bool] = None,
        is_locked: Optional[bool] = None,
    ) -> int:
        values = {}
        if is_sticky is not None:
            values["is_sticky"] = is_sticky
        if is_locked is not None:
            values["is_locked"] = is_locked
        if not values:
            return 0
        result = self.execute(
            update(threads_table)
            .where(threads_table.c.id == thread_id)
            .values(**values)
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def list_thread_posts(
        self, thread_id: int, limit: int = THREAD_POST_LIMIT
    ) -> list[PostRecord]:
        p = posts_table
        rows = self.fetch_all(
            select(p)
            .where(p.c.thread_id == thread_id)
            .order_by(p.c.created_at.asc(), p.c.id.asc())
            .limit(limit)
        )
        return [PostRecord(**row._mapping) for row in rows]

    def add_post_and_bump(
        self,
        thread_id: int,
        *,
        name: str,
        text: str,
        password_hash: Optional[str],
        image_url: Optional[str],
        ip_address: Optional[str],
    ) -> Optional[int]:
        now = self.clock()
        t = threads_table
        with _storage_errors(), self._serialized(), self.Session.begin() as session:
            # The lock check and the bump are one statement; the counter is
            # incremented by the database, never read back and rewritten.
            bumped = self.execute(
                update(t)
                .where(t.c.id == thread_id, t.c.is_locked.is_(False))
                .values(
                    bump_time=case((t.c.bump_time > now, t.c.bump_time), else_=now),
                    reply_count=t.c.reply_count + 1,
                ),
                session=session,
            )
            if bumped.rowcount == 0:
                return None
            inserted = self.execute(
                insert(posts_table).values(
                    thread_id=thread_id,
                    name=name,
                    text=text,
                    password_hash=password_hash,
                    image_url=image_url,
                    ip_address=ip_address,
                    created_at=now,
                ),
                session=session,
            )
        return inserted.lastrowid

    def find_post_for_deletion(self, post_id: int) -> Optional[PostRecord]:
        row = self.fetch_one(select(posts_table).where(posts_table.c.id == post_id))
        return PostRecord(**row._mapping) if row else None

    def delete_post(self, post_id: int) -> int:
        result = self.execute(delete(posts_table).where(posts_table.c.id == post_id))
        return result.rowcount

    def list_recent_posts(self, limit: int) -> list[RecentPostRecord]:
        p, t, b = posts_table, threads_table, boards_table
        rows = self.fetch_all(
            select(
                p,
                b.c.code.label("board_code"),
                t.c.subject.label("thread_subject"),
            )
            .join(t, p.c.thread_id == t.c.id)
            .join(b, t.c.board_id == b.c.id)
            .order_by(p.c.created_at.desc(), p.c.id.desc())
            .limit(limit)
        )
        return [RecentPostRecord(**row._mapping) for row in rows]

    def count_stats(self) -> StatsRecord:
        def _count(table):
            return select(func.count()).select_from(table).scalar_subquery()

        row = self.fetch_one(
            select(
                _count(threads_table).label("total_threads"),
                _count(posts_table).label("total_posts"),
                _count(boards_table).label("total_boards"),
            )
        )
        return StatsRecord(**row._mapping)

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class BoardRow(Base):
    __tablename__ = "boards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(16), nullable=False, unique=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)


class ThreadRow(Base):
    __tablename__ = "threads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    board_id = Column(Integer, ForeignKey("boards.id"), nullable=False, index=True)
    subject = Column(String, nullable=True)
    name = Column(String, nullable=False, default="Anonymous")
    text = Column(Text, nullable=False)
    password_hash = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    bump_time = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)
    reply_count = Column(Integer, nullable=False, default=0)
    is_sticky = Column(Boolean, nullable=False, default=False)
    is_locked = Column(Boolean, nullable=False, default=False)


class PostRow(Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Integer, ForeignKey("threads.id"), nullable=False, index=True)
    name = Column(String, nullable=False, default="Anonymous")
    text = Column(Text, nullable=False)
    password_hash = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)


boards_table = BoardRow.__table__
threads_table = ThreadRow.__table__
posts_table = PostRow.__table__
