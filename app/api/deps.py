"""API Dependencies"""

from dataclasses import dataclass

from fastapi import Query

from app.database import get_db

__all__ = ["get_db", "Pagination", "pagination"]


@dataclass
class Pagination:
    page: int
    page_size: int


def pagination(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
) -> Pagination:
    """Common page/page_size query parameters"""
    return Pagination(page=page, page_size=page_size)
