# Overview: Shared page/limit slicing for list endpoints.

from __future__ import annotations


def paginate(query, *, page: int, limit: int, serialize) -> dict:
    """
    Apply offset/limit to a query and wrap the page with its metadata.

    Returns:
        Dict with 'items', 'count' and 'pagination'.
    """
    page = max(page, 1)
    limit = max(limit, 1)

    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit if total > 0 else 1

    rows = query.offset((page - 1) * limit).limit(limit).all()

    return {
        "items": [serialize(row) for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }
