"""
Listing query builder — the filter / sort / paginate / join logic shared by
every list endpoint (articles, users, comments).

Each entity describes itself once with a ``ListingDefinition``; the same
``build_listing_query`` and ``paginate`` functions are then used for all of
them, so the rules below hold identically across endpoints:

- ``page`` is 1-based, ``skip = (page - 1) * limit``.  An explicitly
  requested page whose offset lies at or beyond the number of matches
  raises ``PageOutOfRange`` instead of returning an empty page.
- ``keyword`` is matched case-insensitively as a literal substring against
  the entity's searchable fields, OR-combined.  Dotted names
  (``"tags.name"``) search through a relationship.
- ``sort_field`` is looked up in the entity's sort allowlist; unknown names
  fall back to the default column.  ``sort_order == "desc"`` sorts
  descending, anything else ascending.  The primary key is appended as a
  tie-breaker so page boundaries are deterministic.
- The count query carries the same filters as the page query, so
  ``total_pages`` is correct after filtering.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from sqlalchemy import Select, asc, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from blog_api.errors import PageOutOfRange
from blog_api.schemas import PaginatedResponse

_LIKE_ESCAPE = "\\"


@dataclass(frozen=True)
class ListingDefinition:
    """Per-entity description consumed by the shared builder."""

    model: type
    default_limit: int
    # Public sort name -> mapped attribute name.
    sort_fields: Mapping[str, str]
    searchable_fields: Sequence[str] = ()
    default_sort: str = "created_at"
    default_order: str = "asc"
    # Eager-loading options (the read-time joins).
    loader_options: Sequence[Any] = ()


@dataclass(frozen=True)
class ListingParams:
    """Normalised listing input, see ``dependencies.listing_params``."""

    page: int = 1
    limit: int | None = None
    page_requested: bool = False
    keyword: str | None = None
    sort_field: str | None = None
    sort_order: str | None = None

    def effective_limit(self, listing: ListingDefinition) -> int:
        return self.limit or listing.default_limit

    def skip(self, listing: ListingDefinition) -> int:
        return (self.page - 1) * self.effective_limit(listing)


@dataclass
class ListingQuery:
    statement: Select
    count_statement: Select
    skip: int
    limit: int


def sort_aliases(*attr_names: str) -> dict[str, str]:
    """Map both ``snake_case`` and ``camelCase`` public names to each attribute."""
    aliases: dict[str, str] = {}
    for name in attr_names:
        head, *rest = name.split("_")
        aliases[name] = name
        aliases[head + "".join(part.title() for part in rest)] = name
    return aliases


def _escape_like(keyword: str) -> str:
    return (
        keyword.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def _search_clause(model: type, path: str, pattern: str):
    head, _, tail = path.partition(".")
    attr = getattr(model, head)
    if not tail:
        return attr.ilike(pattern, escape=_LIKE_ESCAPE)
    target = attr.property.mapper.class_
    return attr.any(getattr(target, tail).ilike(pattern, escape=_LIKE_ESCAPE))


def keyword_filter(listing: ListingDefinition, keyword: str | None):
    """Return the OR-combined keyword clause, or None when there is nothing to match."""
    if not keyword or not listing.searchable_fields:
        return None
    pattern = f"%{_escape_like(keyword)}%"
    return or_(*(_search_clause(listing.model, path, pattern) for path in listing.searchable_fields))


def resolve_sort(listing: ListingDefinition, sort_field: str | None, sort_order: str | None):
    """Return ``(column, descending)`` for the requested sort."""
    attr_name = listing.sort_fields.get(sort_field or "", listing.default_sort)
    column = getattr(listing.model, attr_name)
    order = sort_order if sort_order is not None else listing.default_order
    return column, order == "desc"


def build_listing_query(
    listing: ListingDefinition, params: ListingParams, base_filters: Sequence[Any] = ()
) -> ListingQuery:
    filters = list(base_filters)
    clause = keyword_filter(listing, params.keyword)
    if clause is not None:
        filters.append(clause)

    column, descending = resolve_sort(listing, params.sort_field, params.sort_order)
    direction = desc if descending else asc
    limit = params.effective_limit(listing)
    skip = params.skip(listing)

    statement = (
        select(listing.model)
        .where(*filters)
        .options(*listing.loader_options)
        .order_by(direction(column), direction(listing.model.id))
        .offset(skip)
        .limit(limit)
    )
    count_statement = select(func.count()).select_from(listing.model).where(*filters)
    return ListingQuery(statement, count_statement, skip, limit)


async def paginate(
    db: AsyncSession,
    listing: ListingDefinition,
    params: ListingParams,
    serialize: Callable[[Any], dict],
    base_filters: Sequence[Any] = (),
) -> PaginatedResponse:
    """
    Run a listing and return one page.

    Two SQL statements are issued (plus one per ``selectinload`` option):
    1. COUNT under the listing filters.
    2. SELECT with ORDER BY / OFFSET / LIMIT and the eager loads.
    """
    query = build_listing_query(listing, params, base_filters)

    total: int = (await db.execute(query.count_statement)).scalar_one()
    if params.page_requested and query.skip >= total:
        raise PageOutOfRange()

    result = await db.execute(query.statement)
    rows = result.unique().scalars().all()

    return PaginatedResponse(
        results=len(rows),
        total=total,
        page=params.page,
        limit=query.limit,
        total_pages=math.ceil(total / query.limit) if total > 0 else 0,
        items=[serialize(row) for row in rows],
    )
