from typing import Any

from workers_api.schemas.common import ListOut, MutationOut, Pagination


def ok(data: Any = None, message: str | None = None) -> MutationOut:
    return MutationOut(success=True, message=message, data=data)


def page(items: list, pagination: dict) -> ListOut:
    return ListOut(success=True, data=items, pagination=Pagination(**pagination))


def iso(value) -> str | None:
    return value.isoformat() if value else None
