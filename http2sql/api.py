"""FastAPI application exposing registration, login, users and tags."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings, load_settings
from .database import Database
from .errors import ApiError, ValidationError
from .models import Tag, User, UserWithTags
from .registry import TagRegistry, UserRegistry
from .responses import ApiResponse, envelope, error_response

logger = logging.getLogger("http2sql.api")


class CredentialsRequest(BaseModel):
    email: str
    password: str


class CreateTagRequest(BaseModel):
    user_id: int
    name: str


class RegisteredUserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime


class TagMetadataResponse(BaseModel):
    name: str
    created_at: datetime


class UserMetadataResponse(BaseModel):
    email: str
    created_at: datetime
    tags: List[TagMetadataResponse] = Field(default_factory=list)


class TagResponse(BaseModel):
    id: int
    user_id: int
    name: str
    created_at: datetime


def user_to_response(user: User) -> RegisteredUserResponse:
    return RegisteredUserResponse(id=user.id, email=user.email, created_at=user.created_at)


def user_metadata_to_response(entry: UserWithTags) -> UserMetadataResponse:
    return UserMetadataResponse(
        email=entry.user.email,
        created_at=entry.user.created_at,
        tags=[TagMetadataResponse(name=tag.name, created_at=tag.created_at) for tag in entry.tags],
    )


def tag_to_response(tag: Tag) -> TagResponse:
    return TagResponse(id=tag.id, user_id=tag.user_id, name=tag.name, created_at=tag.created_at)


def create_app(
    *,
    database: Database | None = None,
    settings: Optional[Settings] = None,
    initialize_database: bool = False,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    owns_database = database is None
    if database is None:
        database = Database.from_settings(settings)
        database.initialize()
    elif initialize_database:
        database.initialize()

    users = UserRegistry(database, policy=settings.policy)
    tags = TagRegistry(database, policy=settings.policy)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_database:
            database.close()

    app = FastAPI(
        title="http2sql",
        description="User registration, authentication and tagging over SQL",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.settings = settings

    @app.exception_handler(ApiError)
    async def handle_api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("Rejected malformed request body: %s", exc.errors())
        return error_response(ValidationError("Invalid request body"))

    def get_users() -> UserRegistry:
        return users

    def get_tags() -> TagRegistry:
        return tags

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/auth/register", response_model=ApiResponse[RegisteredUserResponse])
    def register_user(
        payload: CredentialsRequest,
        registry: UserRegistry = Depends(get_users),
    ) -> ApiResponse:
        user = registry.register(payload.email, payload.password)
        return envelope(user_to_response(user), "User registered successfully")

    @app.post("/v1/auth/login", response_model=ApiResponse[None])
    def login_user(
        payload: CredentialsRequest,
        registry: UserRegistry = Depends(get_users),
    ) -> ApiResponse:
        registry.login(payload.email, payload.password)
        return envelope(None, "Correct password")

    @app.get("/v1/users", response_model=ApiResponse[List[UserMetadataResponse]])
    def read_user_metadata(registry: UserRegistry = Depends(get_users)) -> ApiResponse:
        entries = registry.list_with_tags()
        return envelope(
            [user_metadata_to_response(entry) for entry in entries],
            "User metadata retrieved successfully",
        )

    @app.post("/v1/tags", response_model=ApiResponse[TagResponse])
    def create_tag(
        payload: CreateTagRequest,
        registry: TagRegistry = Depends(get_tags),
    ) -> ApiResponse:
        tag = registry.create(payload.user_id, payload.name)
        return envelope(tag_to_response(tag), "Tag created successfully")

    return app


__all__ = ["create_app"]
