"""Pagination helpers for the inspection routes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from aiohttp import web

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Page:
    limit: int
    offset: int

    @property
    def number(self) -> int:
        return self.offset // self.limit + 1


def pagination_params(request: web.Request) -> Page:
    """Read ``limit``/``offset`` from the query string, clamped to sane bounds."""
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", DEFAULT_PAGE_SIZE))
        offset = int(query.get("offset", 0))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    return Page(limit=min(limit, MAX_PAGE_SIZE), offset=max(offset, 0))


def paginated_response(items: list[Any], page: Page, *, key: str, total: int) -> dict[str, Any]:
    return {
        key: items,
        "total": total,
        "page": page.number,
        "page_size": page.limit,
        "has_more": page.offset + len(items) < total,
    }
