from typing import Any

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    success: bool = False
    error_code: str
    message: str
    details: dict | list | str | None = None
    trace_id: str | None = None


class Pagination(BaseModel):
    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0


class MutationOut(BaseModel):
    success: bool = True
    message: str | None = None
    data: Any = None


class ListOut(BaseModel):
    success: bool = True
    data: list[Any] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class MessageOut(BaseModel):
    ok: bool = True
    message: str = 'ok'
