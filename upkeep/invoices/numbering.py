# upkeep/invoices/numbering.py
"""Year-scoped sequential invoice numbers."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from upkeep import db
from upkeep.models import InvoiceCounter, utcnow


def _dialect_insert():
    name = db.session.get_bind().dialect.name
    if name == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
        return insert
    if name == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
        return insert
    return None


def _ensure_counter(year: int) -> None:
    """Create the counter row for ``year`` unless it already exists."""
    insert = _dialect_insert()
    if insert is not None:
        db.session.execute(
            insert(InvoiceCounter)
            .values(year=year, count=0)
            .on_conflict_do_nothing(index_elements=['year'])
        )
        return
    exists = db.session.execute(
        select(InvoiceCounter.year).where(InvoiceCounter.year == year)
    ).first()
    if exists:
        return
    try:
        with db.session.begin_nested():
            db.session.add(InvoiceCounter(year=year, count=0))
    except IntegrityError:
        # another request created it first
        pass


def allocate(year: int | None = None) -> int:
    """Atomically increment the counter for ``year`` and return the new count.

    The increment is a single ``UPDATE ... SET count = count + 1``; the row
    stays locked by this transaction until the caller commits, so the value
    read back is the one this call produced.
    """
    year = year or utcnow().year
    _ensure_counter(year)
    db.session.execute(
        update(InvoiceCounter)
        .where(InvoiceCounter.year == year)
        .values(count=InvoiceCounter.count + 1)
        .execution_options(synchronize_session=False)
    )
    count = db.session.execute(
        select(InvoiceCounter.count).where(InvoiceCounter.year == year)
    ).scalar_one()
    logging.info("allocated invoice counter %s for %s", count, year)
    return count


def format_number(year: int, count: int) -> str:
    return f"{year}-{count:06d}"


def next_invoice_number(year: int | None = None) -> str:
    year = year or utcnow().year
    return format_number(year, allocate(year))
