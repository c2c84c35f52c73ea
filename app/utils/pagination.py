"""
Offset pagination for list endpoints
"""
import math

from sqlalchemy.orm import Query

MAX_PAGE_SIZE = 100


def paginate(query: Query, page: int = 1, limit: int = 10) -> tuple[list, dict]:
    """
    Apply offset pagination to an ordered query

    Returns:
        (items, {"page", "limit", "total", "pages"})
    """
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }
