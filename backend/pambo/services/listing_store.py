from __future__ import annotations

import re
from typing import Iterable

from sqlalchemy import or_, text
from sqlalchemy.exc import SQLAlchemyError

from pambo.extensions import db
from pambo.models import Listing, User
from pambo.services.matchmaking_search import ListingQueryVariant, is_missing_column_error


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_sql_schema_mismatch(error: BaseException) -> bool:
    """Postgres reports ``column ... does not exist``; SQLite says ``no such column``."""
    if is_missing_column_error(error):
        return True
    return "no such column" in str(error or "").lower()


def _order_clause(column_name: str):
    if not _IDENTIFIER.match(column_name or ""):
        raise ValueError(f"invalid order column: {column_name!r}")
    # Raw identifier so a renamed column fails at the database, not here.
    return text(f"{column_name} DESC")


def _int_ids(raw_ids: Iterable) -> list[int]:
    ids: list[int] = []
    for raw in raw_ids or ():
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            continue
    return ids


class SqlListingStore:
    is_schema_mismatch = staticmethod(is_sql_schema_mismatch)

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def fetch_listings(
        self,
        *,
        hub: str,
        status: str,
        region: str | None,
        query: str,
        start: int,
        end: int,
        variant: ListingQueryVariant,
    ) -> list[dict]:
        stmt = self.session.query(Listing).filter(Listing.status == status, Listing.hub == hub)
        if query:
            like = f"%{query}%"
            stmt = stmt.filter(
                or_(
                    Listing.title.ilike(like),
                    Listing.description.ilike(like),
                    Listing.category.ilike(like),
                )
            )
        if variant.apply_region and region:
            stmt = stmt.filter(Listing.county == region)
        if variant.order_column:
            stmt = stmt.order_by(_order_clause(variant.order_column))
        stmt = stmt.offset(max(0, int(start))).limit(max(0, int(end) - int(start) + 1))
        try:
            rows = stmt.all()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return [row.to_dict() for row in rows]

    def fetch_sellers(self, seller_ids: Iterable) -> list[dict]:
        ids = _int_ids(seller_ids)
        if not ids:
            return []
        try:
            rows = self.session.query(User).filter(User.id.in_(ids)).all()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return [row.to_seller_dict() for row in rows]
