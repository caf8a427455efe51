"""
Offset pagination for list endpoints
"""
import logging
from math import ceil
from typing import Any, Dict, Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Query

from laminates.core.constants import DEFAULT_PAGE, DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT

logger = logging.getLogger(__name__)

T = TypeVar('T')


class PaginationParams(BaseModel):
    """Standard pagination parameters"""
    page: int = Field(DEFAULT_PAGE, ge=1, description="Page number (1-based)")
    limit: int = Field(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT, description="Items per page")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResult(BaseModel, Generic[T]):
    items: List[T]
    pagination: Dict[str, Any]

    model_config = ConfigDict(arbitrary_types_allowed=True)


def pagination_info(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = ceil(total / limit) if total > 0 else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def paginate_query(query: Query, params: PaginationParams) -> PaginatedResult:
    """Count, then fetch one page of an already-ordered query"""
    total = query.order_by(None).count()
    items = query.offset(params.offset).limit(params.limit).all()
    logger.debug(f"Paginated query: page {params.page}, {len(items)} items, {total} total")
    return PaginatedResult(items=items, pagination=pagination_info(params.page, params.limit, total))
