"""
HTTP routes for the forum API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends, Path as PathParam, Query, Request
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.engine import make_url

from chanboard import forum
from chanboard.config import Settings, get_settings
from chanboard.db import DbClient
from chanboard.dependencies import get_db_client, get_rate_limiter
from chanboard.ratelimit import RateLimiter
from chanboard.results import ErrorKind, Result
from chanboard.schemas import (
    MAX_ID,
    BoardListResponse,
    BoardPageResponse,
    CreatePostRequest,
    CreatePostResponse,
    CreateThreadRequest,
    CreateThreadResponse,
    DeletePostRequest,
    DeletePostResponse,
    ErrorResponse,
    HealthResponse,
    RecentPostsResponse,
    StatsResponse,
    ThreadPageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
health_router = APIRouter()

BACKUP_FILENAME = "chanboard-backup.db"

STATUS_BY_ERROR = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.THREAD_LOCKED: 400,
    ErrorKind.UNAUTHORIZED: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.STORAGE: 500,
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(result: Result) -> JSONResponse:
    status_code = STATUS_BY_ERROR.get(result.error, 500)
    return JSONResponse(status_code=status_code, content={"error": result.message})


def _caller(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.get("/boards", response_model=BoardListResponse, responses=ERROR_RESPONSES)
def list_boards(db: DbClient = Depends(get_db_client)):
    result = forum.list_boards(db)
    if not result.ok:
        return error_response(result)
    return BoardListResponse(data=[board.as_dict() for board in result.data])


@router.get(
    "/board/{code}", response_model=BoardPageResponse, responses=ERROR_RESPONSES
)
def get_board(code: str, db: DbClient = Depends(get_db_client)):
    result = forum.get_board(db, code)
    if not result.ok:
        return error_response(result)
    return BoardPageResponse(data=result.data.as_dict())


@router.get(
    "/thread/{thread_id}", response_model=ThreadPageResponse, responses=ERROR_RESPONSES
)
def get_thread(
    thread_id: int = PathParam(..., gt=0, le=MAX_ID),
    db: DbClient = Depends(get_db_client),
):
    result = forum.get_thread(db, thread_id)
    if not result.ok:
        return error_response(result)
    return ThreadPageResponse(data=result.data.as_dict())


@router.post(
    "/thread/create", response_model=CreateThreadResponse, responses=ERROR_RESPONSES
)
def create_thread(
    payload: CreateThreadRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    caller = _caller(request)
    rejected = forum.admit(limiter, caller)
    if rejected:
        return error_response(rejected)
    result = forum.create_thread(
        db,
        forum.NewThread(
            board=payload.board,
            subject=payload.subject,
            name=payload.name,
            text=payload.text,
            password=payload.password,
            image_url=payload.image_url,
            ip_address=caller,
        ),
    )
    if not result.ok:
        return error_response(result)
    return CreateThreadResponse(message=result.message, **result.data)


@router.post(
    "/post/create", response_model=CreatePostResponse, responses=ERROR_RESPONSES
)
def create_post(
    payload: CreatePostRequest,
    request: Request,
    db: DbClient = Depends(get_db_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    caller = _caller(request)
    rejected = forum.admit(limiter, caller)
    if rejected:
        return error_response(rejected)
    result = forum.create_post(
        db,
        forum.NewPost(
            thread_id=payload.thread_id,
            name=payload.name,
            text=payload.text,
            password=payload.password,
            image_url=payload.image_url,
            ip_address=caller,
        ),
    )
    if not result.ok:
        return error_response(result)
    return CreatePostResponse(message=result.message, **result.data)


@router.post(
    "/post/delete", response_model=DeletePostResponse, responses=ERROR_RESPONSES
)
def delete_post(payload: DeletePostRequest, db: DbClient = Depends(get_db_client)):
    result = forum.delete_post(db, payload.post_id, payload.password)
    if not result.ok:
        return error_response(result)
    return DeletePostResponse(message=result.message)


@router.get(
    "/posts/recent", response_model=RecentPostsResponse, responses=ERROR_RESPONSES
)
def recent_posts(
    limit: int | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    result = forum.list_recent_posts(db, limit)
    if not result.ok:
        return error_response(result)
    return RecentPostsResponse(data=[post.as_dict() for post in result.data])


@router.get("/stats", response_model=StatsResponse, responses=ERROR_RESPONSES)
def stats(db: DbClient = Depends(get_db_client)):
    result = forum.get_stats(db)
    if not result.ok:
        return error_response(result)
    return StatsResponse(data=result.data.as_dict())


def _database_file(settings: Settings) -> Path | None:
    url = make_url(settings.database_url)
    if url.get_backend_name() != "sqlite":
        return None
    if url.database in (None, "", ":memory:"):
        return None
    return Path(url.database)


@router.get(
    "/backup",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def download_backup(settings: Settings = Depends(get_settings)):
    if settings.is_production:
        return JSONResponse(status_code=403, content={"error": "Access denied"})
    path = _database_file(settings)
    if settings.use_in_memory_backends or path is None or not path.exists():
        return JSONResponse(status_code=404, content={"error": "Database not found"})
    logger.info("Serving database backup from %s", path)
    return FileResponse(
        path, media_type="application/octet-stream", filename=BACKUP_FILENAME
    )


@health_router.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_settings)):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=settings.environment,
    )
