import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from upkeep import create_app, db
from upkeep.invoices.numbering import allocate, format_number, next_invoice_number
from upkeep.models import Invoice, InvoiceLineItem, ProjectEstimate, WorkOrder
from upkeep.reconcile import estimates_cli, reconcile


def setup_app():
    app = create_app('testing')
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def make_estimate(**kw):
    values = dict(title='Gutter cleaning', description='All sides', building_id=2,
                  created_by='u1', status='approved', estimated_price=150,
                  estimated_cost=60)
    values.update(kw)
    est = ProjectEstimate(**values)
    db.session.add(est)
    db.session.commit()
    return est


def test_relinks_half_finished_conversions():
    app = setup_app()
    with app.app_context():
        est = make_estimate()
        wo = WorkOrder(title=est.title, building_id=2, project_estimate_id=est.id)
        inv = Invoice(invoice_number='2025-000001', building_id=2, project_estimate_id=est.id,
                      subtotal=150, total=150)
        inv.line_items.append(InvoiceLineItem(description='Gutter cleaning', unit_price=150,
                                              total_price=150))
        db.session.add_all([wo, inv])
        db.session.commit()

        summary = reconcile()
        assert summary['workOrdersRelinked'] == 1
        assert summary['invoicesRelinked'] == 1
        db.session.refresh(est)
        assert est.work_order_id == wo.id
        assert est.invoice_id == inv.id
        assert est.status in ('converted_to_workorder', 'converted_to_invoice')

        again = reconcile()
        assert again['workOrdersRelinked'] == 0
        assert again['invoicesRelinked'] == 0
        assert again['invoiceLineItemsAdded'] == 0
        assert again['invoiceTotalsFixed'] == 0


def test_rebuilds_missing_invoice_line_item():
    app = setup_app()
    with app.app_context():
        est = make_estimate(status='converted_to_invoice', estimated_price=0,
                            estimated_cost=75)
        inv = Invoice(invoice_number='2025-000002', building_id=2, project_estimate_id=est.id,
                      subtotal=0, total=0)
        db.session.add(inv)
        db.session.commit()
        est.invoice_id = inv.id
        db.session.commit()

        summary = reconcile()
        assert summary['invoiceLineItemsAdded'] == 1
        assert summary['invoiceTotalsFixed'] == 1
        db.session.refresh(inv)
        assert len(inv.line_items) == 1
        assert inv.line_items[0].description == 'Gutter cleaning'
        assert inv.total == 75.0

        assert reconcile()['invoiceLineItemsAdded'] == 0


def test_dry_run_changes_nothing():
    app = setup_app()
    with app.app_context():
        est = make_estimate()
        db.session.add(WorkOrder(title='x', building_id=2, project_estimate_id=est.id))
        db.session.commit()
        summary = reconcile(dry_run=True)
        assert summary['workOrdersRelinked'] == 1
        db.session.refresh(est)
        assert est.work_order_id is None
        assert est.status == 'approved'


def test_reports_orphans_and_conflicts():
    app = setup_app()
    with app.app_context():
        est = make_estimate(status='converted_to_workorder', work_order_id=999)
        db.session.add(WorkOrder(title='stray', building_id=2, project_estimate_id=est.id))
        db.session.commit()
        summary = reconcile()
        assert summary['orphanedEstimates'] == [{'estimate': est.id, 'workOrderId': 999}]
        assert len(summary['conflictingLinks']) == 1
        db.session.refresh(est)
        assert est.work_order_id == 999


def test_counter_is_per_year():
    app = setup_app()
    with app.app_context():
        assert next_invoice_number(2026) == '2026-000001'
        assert next_invoice_number(2026) == '2026-000002'
        assert next_invoice_number(2027) == '2027-000001'
        db.session.commit()
        assert allocate(2026) == 3
        assert format_number(2026, 42) == '2026-000042'


def test_cli_commands():
    app = setup_app()
    runner = app.test_cli_runner()
    result = runner.invoke(estimates_cli, ['next-invoice-number', '--year', '2030'])
    assert result.exit_code == 0
    assert result.output.strip().splitlines()[-1] == '2030-000001'

    result = runner.invoke(estimates_cli, ['reconcile', '--dry-run'])
    assert result.exit_code == 0
    assert '"workOrdersRelinked": 0' in result.output
