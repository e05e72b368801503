# secondact/services/search.py
"""
Costume search: turn storefront query-string filters into one parameterised
WHERE / ORDER BY clause and shape the paginated response.

Two public endpoints share this module:
  - GET /api/costumes          (browse: category by name, size "contains")
  - GET /api/costumes/search   (faceted: category ids, exact size lists)

Only ``available`` costumes are ever returned.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

MAX_PAGE_SIZE = 100

# sort key (as sent by the client) -> SQL column; anything else falls back
SORT_COLUMNS = {
    "price": "c.price",
    "title": "c.title",
    "createdAt": "c.created_at",
}

CONDITIONS = ("NEW", "LIKE_NEW", "GOOD", "FAIR")


@dataclass
class CostumeSearch:
    text: Optional[str] = None
    category_name: Optional[str] = None
    category_ids: List[str] = field(default_factory=list)
    size_contains: Optional[str] = None
    sizes: List[str] = field(default_factory=list)
    conditions: List[str] = field(default_factory=list)
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    sort_by: str = "createdAt"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ---- Parsing -----------------------------------------------------------------

def _csv(v: Optional[str]) -> List[str]:
    return [p.strip() for p in (v or "").split(",") if p.strip()]


def _order(v: Optional[str]) -> str:
    return "asc" if (v or "").lower() == "asc" else "desc"


def _clamp_page(page: int, limit: int) -> Tuple[int, int]:
    return max(1, page), min(max(1, limit), MAX_PAGE_SIZE)


def browse_filters(
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    size: Optional[str] = None,
    condition: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> CostumeSearch:
    """Filters for the browse listing (GET /api/costumes)."""
    page, limit = _clamp_page(page, limit)
    return CostumeSearch(
        text=(search or "").strip() or None,
        category_name=(category or "").strip() or None,
        size_contains=(size or "").strip() or None,
        conditions=[condition.strip().upper()] if condition and condition.strip() else [],
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by if sort_by in SORT_COLUMNS else "createdAt",
        sort_order=_order(sort_order),
        page=page,
        limit=limit,
    )


def faceted_filters(
    *,
    q: Optional[str] = None,
    categories: Optional[str] = None,
    sizes: Optional[str] = None,
    conditions: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    page: int = 1,
    limit: int = 24,
) -> CostumeSearch:
    """Filters for the search page (GET /api/costumes/search)."""
    page, limit = _clamp_page(page, limit)
    # the search page only offers price and recency; anything else is newest first
    if sort_by in ("price", "createdAt"):
        key, order = sort_by, _order(sort_order)
    else:
        key, order = "createdAt", "desc"
    return CostumeSearch(
        text=(q or "").strip() or None,
        category_ids=_csv(categories),
        sizes=_csv(sizes),
        conditions=_csv(conditions),
        min_price=min_price,
        max_price=max_price,
        sort_by=key,
        sort_order=order,
        page=page,
        limit=limit,
    )


# ---- SQL ---------------------------------------------------------------------

def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def build_search_sql(s: CostumeSearch) -> Tuple[str, str, List[Any]]:
    """
    Return (where_sql, order_sql, params) for a costumes query aliased ``c``.

    Every user-supplied value is a positional parameter; the only
    interpolated pieces are whitelisted column names and directions.
    """
    where = ["c.status = 'available'"]
    params: List[Any] = []

    def bind(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    if s.text:
        p = bind(_like(s.text))
        where.append(f"(c.title ILIKE {p} OR c.description ILIKE {p})")
    if s.category_name:
        p = bind(_like(s.category_name))
        where.append(
            "EXISTS (SELECT 1 FROM costume_to_category ctc "
            "JOIN costume_categories cc ON cc.id = ctc.category_id "
            f"WHERE ctc.costume_id = c.id AND cc.name ILIKE {p})"
        )
    if s.category_ids:
        p = bind(list(s.category_ids))
        where.append(
            "EXISTS (SELECT 1 FROM costume_to_category ctc "
            f"WHERE ctc.costume_id = c.id AND ctc.category_id = ANY({p}::text[]))"
        )
    if s.size_contains:
        where.append(f"c.size ILIKE {bind(_like(s.size_contains))}")
    if s.sizes:
        where.append(f"c.size = ANY({bind(list(s.sizes))}::text[])")
    if s.conditions:
        where.append(f"c.condition = ANY({bind(list(s.conditions))}::text[])")
    if s.min_price is not None:
        where.append(f"c.price >= {bind(s.min_price)}")
    if s.max_price is not None:
        where.append(f"c.price <= {bind(s.max_price)}")

    column = SORT_COLUMNS.get(s.sort_by, "c.created_at")
    direction = "ASC" if s.sort_order == "asc" else "DESC"
    order_sql = f"ORDER BY {column} {direction}, c.id {direction}"

    return " AND ".join(where), order_sql, params


# ---- Response shaping --------------------------------------------------------

def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


async def run_search(store, s: CostumeSearch) -> Tuple[List[Dict[str, Any]], int]:
    return await store.search_costumes(s)


def browse_page(costumes: List[Dict[str, Any]], total: int, s: CostumeSearch) -> Dict[str, Any]:
    return {
        "costumes": costumes,
        "pagination": {
            "page": s.page,
            "limit": s.limit,
            "total": total,
            "pages": total_pages(total, s.limit),
        },
    }


def search_page(costumes: List[Dict[str, Any]], total: int, s: CostumeSearch) -> Dict[str, Any]:
    return {
        "costumes": costumes,
        "totalResults": total,
        "totalPages": total_pages(total, s.limit),
        "currentPage": s.page,
        "limit": s.limit,
    }
