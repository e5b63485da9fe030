from __future__ import annotations
import logging
from http import HTTPStatus
from typing import Any, Dict, Generic, Literal, TypeVar

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.crud.errors import AffiliateError

T = TypeVar("T")


class ErrorBody(BaseModel):
    kind: str
    reason: str
    field: str | None = None
    details: Dict[str, Any] = {}


class Ok(BaseModel, Generic[T]):
    ok: Literal[True] = True
    value: T


class Err(BaseModel):
    ok: Literal[False] = False
    error: ErrorBody


def _err(status_code: int, error: ErrorBody) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=Err(error=error).model_dump(mode="json"))


async def affiliate_error_handler(request: Request, exc: AffiliateError) -> JSONResponse:
    if exc.status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.reason}")
    return _err(
        exc.status_code,
        ErrorBody(kind=exc.kind, reason=exc.reason, field=getattr(exc, "field", None), details=exc.details),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"] if part not in ("body", "query", "path", "header"))
    return _err(
        422,
        ErrorBody(kind="ValidationError", reason=f"{field}: {first['msg']}" if field else first["msg"], field=field or None),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = HTTPStatus(exc.status_code).phrase.replace(" ", "")
    return _err(exc.status_code, ErrorBody(kind=kind, reason=str(exc.detail)))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AffiliateError, affiliate_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
