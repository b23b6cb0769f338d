# upkeep/invoices/routes.py

from flask import Blueprint, jsonify

from upkeep import db
from upkeep.errors import NotFound
from upkeep.estimates.utils import serialize_invoice
from upkeep.models import Invoice

bp = Blueprint('invoices', __name__)


@bp.route('/<int:invoice_id>')
def view_invoice(invoice_id):
    inv = db.session.get(Invoice, invoice_id)
    if inv is None:
        raise NotFound('Invoice not found')
    return jsonify(status='success', data={'invoice': serialize_invoice(inv)})


@bp.route('/by-number/<invoice_number>')
def view_invoice_by_number(invoice_number):
    inv = Invoice.query.filter_by(invoice_number=invoice_number.strip().upper()).first()
    if inv is None:
        raise NotFound('Invoice not found')
    return jsonify(status='success', data={'invoice': serialize_invoice(inv)})
