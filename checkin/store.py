# checkin/store.py
"""
Relational store helpers: query / count / upsert over the Flask-SQLAlchemy session.

`upsert` is insert-or-ignore on the given conflict target. Callers must not
assume their call count matches the stored row count; the unique constraint
decides that.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError

from .models import db

log = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _criteria(model, filters: dict) -> list:
    return [getattr(model, name) == value for name, value in filters.items()]


def safe_commit(session=None):
    """Commit once; on DB disconnect/idle-ssl errors, rollback and retry once."""
    session = session or db.session
    try:
        session.commit()
    except OperationalError as e:
        session.rollback()
        log.warning("Commit failed (retrying once): %s", e)
        try:
            session.commit()
        except Exception:
            session.rollback()
            raise


class RelationalStore:
    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    def query(self, model, *, order_by: Sequence[Any] = (), **filters) -> list:
        stmt = select(model).where(*_criteria(model, filters))
        if order_by:
            stmt = stmt.order_by(*order_by)
        return list(self.session.scalars(stmt))

    def count(self, model, **filters) -> int:
        stmt = select(func.count()).select_from(model).where(*_criteria(model, filters))
        return int(self.session.scalar(stmt) or 0)

    def upsert(self, model, rows: Iterable[dict], conflict_target: Sequence[str]) -> int:
        """Insert `rows`, ignoring any that collide on `conflict_target`.

        Returns the number of rows actually inserted when the driver reports it.
        """
        rows = list(rows)
        if not rows:
            return 0

        session = self.session
        dialect = session.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)

        if insert is not None:
            stmt = (
                insert(model.__table__)
                .values(rows)
                .on_conflict_do_nothing(index_elements=list(conflict_target))
            )
            result = session.execute(stmt)
            safe_commit(session)
            inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
            log.debug("Upsert into %s: %d/%d new", model.__tablename__, inserted, len(rows))
            return inserted

        # Dialects without ON CONFLICT: one row at a time, a duplicate is the no-op outcome.
        inserted = 0
        for row in rows:
            try:
                with session.begin_nested():
                    session.add(model(**row))
                inserted += 1
            except IntegrityError:
                log.debug("Upsert into %s: %s already present", model.__tablename__,
                          {k: row.get(k) for k in conflict_target})
        safe_commit(session)
        return inserted
