"""Uniform response envelope returned by every endpoint."""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import ApiError, ErrorKind

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    message: str


class ErrorResponse(BaseModel):
    error: ErrorKind
    message: str


def envelope(data: Optional[T], message: str) -> ApiResponse:
    return ApiResponse(data=data, message=message)


def error_response(error: ApiError) -> JSONResponse:
    body = ErrorResponse(error=error.kind, message=error.message)
    return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json"))


__all__ = ["ApiResponse", "ErrorResponse", "envelope", "error_response"]
