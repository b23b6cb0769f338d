"""Repair links between estimates and the work orders/invoices made from them.

Conversions are written in a single transaction, so this only finds work on
data imported from elsewhere or written by older code.  It is safe to run
repeatedly: a second pass over repaired data changes nothing.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import click
from flask.cli import with_appcontext
from sqlalchemy import func

from upkeep import db
from upkeep.estimates.totals import money, to_amount
from upkeep.invoices.numbering import next_invoice_number
from upkeep.models import (
    CONVERTED_STATUSES,
    Invoice,
    InvoiceLineItem,
    ProjectEstimate,
    WorkOrder,
)


def _new_summary() -> Dict[str, Any]:
    return {
        'workOrdersRelinked': 0,
        'invoicesRelinked': 0,
        'invoiceLineItemsAdded': 0,
        'invoiceTotalsFixed': 0,
        'orphanedEstimates': [],
        'conflictingLinks': [],
        'duplicateInvoiceNumbers': [],
    }


def _relink(summary, records, ref_attr: str, status: str, counter: str) -> None:
    for record in records:
        est = db.session.get(ProjectEstimate, record.project_estimate_id)
        if est is None:
            continue
        current = getattr(est, ref_attr)
        if current is None:
            logging.info("relinking estimate %s.%s -> %s", est.id, ref_attr, record.id)
            setattr(est, ref_attr, record.id)
            if est.status not in CONVERTED_STATUSES:
                est.status = status
            summary[counter] += 1
        elif current != record.id:
            summary['conflictingLinks'].append(
                {'estimate': est.id, ref_attr: current, 'unlinked': record.id}
            )


def _find_orphans(summary) -> None:
    linked = ProjectEstimate.query.filter(
        (ProjectEstimate.work_order_id.isnot(None)) | (ProjectEstimate.invoice_id.isnot(None))
    )
    for est in linked.order_by(ProjectEstimate.id):
        if est.work_order_id and db.session.get(WorkOrder, est.work_order_id) is None:
            summary['orphanedEstimates'].append({'estimate': est.id, 'workOrderId': est.work_order_id})
        if est.invoice_id and db.session.get(Invoice, est.invoice_id) is None:
            summary['orphanedEstimates'].append({'estimate': est.id, 'invoiceId': est.invoice_id})


def _repair_invoice(summary, invoice: Invoice) -> None:
    if not invoice.line_items:
        est = (db.session.get(ProjectEstimate, invoice.project_estimate_id)
               if invoice.project_estimate_id else None)
        amount = money(invoice.total)
        if not amount and est is not None:
            amount = money(est.estimated_price) or money(est.estimated_cost)
        description = ((est.title if est is not None else None)
                       or invoice.description or 'Project work')
        invoice.line_items.append(InvoiceLineItem(
            description=description, quantity=1, unit_price=amount, total_price=amount,
        ))
        summary['invoiceLineItemsAdded'] += 1
        logging.info("invoice %s: rebuilt line item (%.2f)", invoice.invoice_number, amount)

    subtotal = money(sum(to_amount(li.total_price) for li in invoice.line_items))
    expected_total = money(subtotal + to_amount(invoice.tax))
    if money(invoice.subtotal) != subtotal or money(invoice.total) != expected_total:
        logging.info(
            "invoice %s: totals %.2f -> %.2f",
            invoice.invoice_number, to_amount(invoice.total), expected_total,
        )
        invoice.calculate_totals()
        summary['invoiceTotalsFixed'] += 1


def reconcile(dry_run: bool = False) -> Dict[str, Any]:
    summary = _new_summary()

    work_orders = (WorkOrder.query.filter(WorkOrder.project_estimate_id.isnot(None))
                   .order_by(WorkOrder.id).all())
    _relink(summary, work_orders, 'work_order_id', 'converted_to_workorder', 'workOrdersRelinked')

    invoices = (Invoice.query.filter(Invoice.project_estimate_id.isnot(None))
                .order_by(Invoice.id).all())
    _relink(summary, invoices, 'invoice_id', 'converted_to_invoice', 'invoicesRelinked')

    _find_orphans(summary)

    for invoice in Invoice.query.order_by(Invoice.id):
        _repair_invoice(summary, invoice)

    dupes = (db.session.query(Invoice.invoice_number, func.count(Invoice.id))
             .group_by(Invoice.invoice_number)
             .having(func.count(Invoice.id) > 1)
             .all())
    summary['duplicateInvoiceNumbers'] = [
        {'invoiceNumber': number, 'count': count} for number, count in dupes
    ]

    if dry_run:
        db.session.rollback()
    else:
        db.session.commit()
    logging.info("reconcile finished (dry_run=%s): %s", dry_run, summary)
    return summary


@click.group("estimates")
def estimates_cli() -> None:
    """Project estimate maintenance commands."""


@estimates_cli.command("reconcile")
@click.option("--dry-run", is_flag=True, help="Report without saving repairs")
@with_appcontext
def reconcile_command(dry_run: bool) -> None:
    summary = reconcile(dry_run=dry_run)
    click.echo(json.dumps(summary, indent=2))


@estimates_cli.command("next-invoice-number")
@click.option("--year", type=int, default=None, help="Counter year (defaults to now)")
@with_appcontext
def next_invoice_number_command(year: int | None) -> None:
    """Reserve and print the next invoice number."""
    number = next_invoice_number(year)
    db.session.commit()
    click.echo(number)
