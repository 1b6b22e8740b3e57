"""
Page/limit pagination and whitelisted sorting for list endpoints.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


@dataclass
class PaginationParams:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = None
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination_params(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    sortBy: Optional[str] = Query(None),
    sortOrder: str = Query("desc", pattern="^(asc|desc)$"),
) -> PaginationParams:
    """FastAPI dependency reading ?page=&limit=&sortBy=&sortOrder=."""
    return PaginationParams(page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder)


async def paginate(
    session: AsyncSession,
    stmt,
    params: PaginationParams,
    sort_columns: Dict[str, Any],
    default_sort: str,
) -> Tuple[List[Any], int]:
    """
    Apply sorting, offset and limit to a select() and return (rows, total).

    Unknown sortBy values fall back to default_sort so callers never sort
    on arbitrary client-supplied columns.
    """
    total = (
        await session.execute(select(func.count()).select_from(stmt.order_by(None).subquery()))
    ).scalar_one()

    column = sort_columns.get(params.sort_by or "", sort_columns[default_sort])
    ordering = column.asc() if params.sort_order == "asc" else column.desc()
    result = await session.execute(stmt.order_by(ordering).offset(params.offset).limit(params.limit))
    return list(result.scalars().all()), total


def build_page(data: List[Dict], params: PaginationParams, total: int) -> Dict:
    """Shape a list response: {data, page, limit, totalItems, totalPages}."""
    return {
        "data": data,
        "page": params.page,
        "limit": params.limit,
        "totalItems": total,
        "totalPages": math.ceil(total / params.limit) if total else 0,
    }
