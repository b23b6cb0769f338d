# upkeep/estimates/conversion.py
"""Turn approved estimates into work orders or invoices.

Each conversion writes the new record and the estimate's status/reference in
one transaction: either both are committed or neither is.
"""

from __future__ import annotations

import copy
import logging
from datetime import timedelta

from flask import current_app

from upkeep import db
from upkeep.errors import StateConflict
from upkeep.estimates import lifecycle
from upkeep.estimates.totals import money
from upkeep.invoices.numbering import next_invoice_number
from upkeep.models import Invoice, InvoiceLineItem, WorkOrder, utcnow


def _ensure_approved(estimate, message: str) -> None:
    if estimate.status != 'approved':
        raise StateConflict(message)


def convert_to_work_order(estimate, actor=None) -> WorkOrder:
    if estimate.work_order_id is not None or estimate.status == 'converted_to_workorder':
        raise StateConflict('Project estimate has already been converted')
    _ensure_approved(
        estimate, 'Only approved project estimates can be converted to work orders'
    )

    work_order = WorkOrder(
        title=estimate.title,
        description=estimate.description,
        building_id=estimate.building_id,
        apartment_number=estimate.apartment_number,
        estimated_cost=money(estimate.estimated_cost),
        price=money(estimate.estimated_price),
        scheduled_date=estimate.proposed_start_date or utcnow(),
        photos=copy.deepcopy(estimate.photos or []),
        notes=estimate.notes,
        created_by=str(actor) if actor else estimate.created_by,
        status='pending',
        project_estimate_id=estimate.id,
    )
    try:
        db.session.add(work_order)
        db.session.flush()  # obtain work_order.id
        estimate.work_order_id = work_order.id
        lifecycle.mark_converted(estimate, 'converted_to_workorder', actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logging.info("estimate %s converted to work order %s", estimate.id, work_order.id)
    return work_order


def invoice_unit_price(estimate) -> float:
    """Invoice the client price, or the cost when no price was set."""
    price = money(estimate.estimated_price)
    return price if price else money(estimate.estimated_cost)


def convert_to_invoice(estimate, actor=None) -> Invoice:
    if estimate.invoice_id is not None or estimate.status == 'converted_to_invoice':
        raise StateConflict('Project estimate has already been converted to an invoice')
    _ensure_approved(estimate, 'Only approved estimates can be converted to invoices')

    amount = invoice_unit_price(estimate)
    now = utcnow()
    try:
        invoice = Invoice(
            invoice_number=next_invoice_number(now.year),
            project_estimate_id=estimate.id,
            building_id=estimate.building_id,
            apartment_number=estimate.apartment_number,
            description=estimate.description,
            status='open',
            invoice_date=now,
            due_date=now + timedelta(days=current_app.config.get('INVOICE_DUE_DAYS', 30)),
            notes=estimate.notes,
            created_by=str(actor) if actor else estimate.created_by,
        )
        invoice.line_items.append(InvoiceLineItem(
            description=estimate.title or estimate.description,
            quantity=1,
            unit_price=amount,
            total_price=amount,
        ))
        invoice.calculate_totals()
        db.session.add(invoice)
        db.session.flush()
        estimate.invoice_id = invoice.id
        lifecycle.mark_converted(estimate, 'converted_to_invoice', actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logging.info(
        "estimate %s converted to invoice %s (%s)",
        estimate.id, invoice.id, invoice.invoice_number,
    )
    return invoice
