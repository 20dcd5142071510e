from __future__ import annotations

import math

from sqlalchemy.orm import Query


def paginate(query: Query, page: int, limit: int) -> tuple[list, dict]:
    page = max(1, int(page or 1))
    limit = max(1, int(limit or 20))
    total = int(query.order_by(None).count())
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': int(math.ceil(total / limit)) if total else 0,
    }


def order_column(model, sort_by: str | None, allowed: set[str], default: str):
    name = sort_by if sort_by in allowed else default
    return getattr(model, name)
