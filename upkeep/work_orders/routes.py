# upkeep/work_orders/routes.py

from flask import Blueprint, jsonify

from upkeep import db
from upkeep.errors import NotFound
from upkeep.estimates.utils import serialize_work_order
from upkeep.models import WorkOrder

bp = Blueprint('work_orders', __name__)


@bp.route('/<int:work_order_id>')
def view_work_order(work_order_id):
    wo = db.session.get(WorkOrder, work_order_id)
    if wo is None:
        raise NotFound('Work order not found')
    return jsonify(status='success', data={'workOrder': serialize_work_order(wo)})
