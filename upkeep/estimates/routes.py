# upkeep/estimates/routes.py

import json

from flask import Blueprint, request, jsonify, Response

from upkeep import db
from upkeep.errors import StateConflict, UpkeepError, ValidationError
from upkeep.estimates import client, conversion, lifecycle, store
from upkeep.estimates.photos import purge_photos, save_uploads
from upkeep.estimates.totals import calculate_totals
from upkeep.estimates.utils import (
    client_view,
    serialize_estimate,
    serialize_invoice,
    serialize_line_item,
    serialize_work_order,
)
from upkeep.pdf import render_estimate_pdf

bp = Blueprint('estimates', __name__)

CLIENT_ERROR = 'This estimate can no longer be answered'


def _actor():
    """User id set by the auth layer in front of this service."""
    return request.headers.get('X-User-Id')


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    return forwarded.split(',')[0].strip() or request.remote_addr


def _payload() -> dict:
    """JSON body, or form fields when photos are uploaded as multipart."""
    if request.files or request.form:
        data = request.form.to_dict()
        for key in ('lineItems', 'photos'):
            if isinstance(data.get(key), str):
                try:
                    data[key] = json.loads(data[key])
                except ValueError:
                    raise ValidationError(f'{key} must be a JSON list') from None
        return data
    return request.get_json(silent=True) or {}


def _uploaded_photos(data: dict) -> list:
    return save_uploads(
        request.files.getlist('photos'),
        caption=data.pop('photoCaption', ''),
        photo_type=data.pop('photoType', 'site_visit'),
    )


def _estimate_response(est, status=200, **extra):
    data = {'projectEstimate': serialize_estimate(est)}
    data.update(extra)
    return jsonify(status='success', data=data), status


def _page_response(page):
    return jsonify(
        status='success',
        results=len(page.items),
        totalPages=page.pages,
        currentPage=page.page,
        total=page.total,
        data={'projectEstimates': [serialize_estimate(e) for e in page.items]},
    )


@bp.route('/', methods=['GET'])
def list_estimates():
    return _page_response(store.list_estimates(request.args))


@bp.route('/stats')
def estimate_stats():
    year = request.args.get('targetYear', type=int)
    return jsonify(status='success', data={'stats': store.estimate_stats(year)})


@bp.route('/pending-approvals')
def pending_approvals():
    return _page_response(store.pending_approvals(request.args))


@bp.route('/', methods=['POST'])
def create_estimate():
    data = _payload()
    created_by = _actor() or data.pop('createdBy', None)
    data.pop('createdBy', None)
    photos = _uploaded_photos(data)
    try:
        est = store.create_estimate(data, created_by, photos=photos)
    except UpkeepError:
        purge_photos(photos)
        raise
    return _estimate_response(est, 201)


@bp.route('/<int:estimate_id>', methods=['GET'])
def view_estimate(estimate_id):
    return _estimate_response(store.get_estimate(estimate_id))


@bp.route('/<int:estimate_id>', methods=['PATCH'])
def update_estimate(estimate_id):
    est = store.get_estimate(estimate_id)
    data = _payload()
    photos = _uploaded_photos(data)
    try:
        store.update_estimate(est, data, photos=photos)
    except UpkeepError:
        purge_photos(photos)
        raise
    return _estimate_response(est)


@bp.route('/<int:estimate_id>', methods=['DELETE'])
def delete_estimate(estimate_id):
    est = store.get_estimate(estimate_id)
    store.delete_estimate(est)
    return '', 204


@bp.route('/<int:estimate_id>/line-items', methods=['POST'])
def add_line_item(estimate_id):
    est = store.get_estimate(estimate_id)
    item = store.add_line_item(est, request.get_json(silent=True) or {})
    return _estimate_response(est, 201, lineItem=serialize_line_item(item))


@bp.route('/<int:estimate_id>/line-items/<int:item_id>', methods=['PUT'])
def update_line_item(estimate_id, item_id):
    est = store.get_estimate(estimate_id)
    item = store.update_line_item(est, item_id, request.get_json(silent=True) or {})
    return _estimate_response(est, lineItem=serialize_line_item(item))


@bp.route('/<int:estimate_id>/line-items/<int:item_id>', methods=['DELETE'])
def remove_line_item(estimate_id, item_id):
    est = store.get_estimate(estimate_id)
    store.remove_line_item(est, item_id)
    return _estimate_response(est)


@bp.route('/<int:estimate_id>/calculate-totals', methods=['PATCH'])
def recalculate_totals(estimate_id):
    est = store.get_estimate(estimate_id)
    lifecycle.ensure_mutable(est)
    totals = calculate_totals(est)
    db.session.commit()
    return _estimate_response(est, totals=totals)


@bp.route('/<int:estimate_id>/send-to-client', methods=['POST'])
def send_to_client(estimate_id):
    est = store.get_estimate(estimate_id)
    data = request.get_json(silent=True) or {}
    lifecycle.submit(est, data.get('clientEmail'), actor=_actor())
    db.session.commit()
    return _estimate_response(est)


@bp.route('/<int:estimate_id>/mark-pending', methods=['PATCH'])
def mark_pending(estimate_id):
    est = store.get_estimate(estimate_id)
    lifecycle.mark_pending(est, actor=_actor())
    db.session.commit()
    return _estimate_response(est)


@bp.route('/<int:estimate_id>/approve', methods=['PATCH'])
def approve_estimate(estimate_id):
    est = store.get_estimate(estimate_id)
    data = request.get_json(silent=True) or {}
    approved = data.get('approved', True)
    if not isinstance(approved, bool):
        raise ValidationError('approved must be true or false')
    lifecycle.review(
        est,
        approved,
        actor=_actor(),
        rejection_reason=data.get('rejectionReason'),
    )
    db.session.commit()
    return _estimate_response(est)


@bp.route('/<int:estimate_id>/reject', methods=['PATCH'])
def reject_estimate(estimate_id):
    est = store.get_estimate(estimate_id)
    data = request.get_json(silent=True) or {}
    lifecycle.reject(est, data.get('reason') or data.get('rejectionReason'), actor=_actor())
    db.session.commit()
    return _estimate_response(est)


@bp.route('/<int:estimate_id>/convert', methods=['POST'])
def convert_to_work_order(estimate_id):
    est = store.get_estimate(estimate_id)
    work_order = conversion.convert_to_work_order(est, actor=_actor())
    return _estimate_response(est, 201, workOrder=serialize_work_order(work_order))


@bp.route('/<int:estimate_id>/convert-to-invoice', methods=['POST'])
def convert_to_invoice(estimate_id):
    est = store.get_estimate(estimate_id)
    invoice = conversion.convert_to_invoice(est, actor=_actor())
    return _estimate_response(est, 201, invoice=serialize_invoice(invoice))


@bp.route('/<int:estimate_id>/pdf')
def estimate_pdf(estimate_id):
    est = store.get_estimate(estimate_id)
    pdf = render_estimate_pdf(est)
    resp = Response(pdf, mimetype='application/pdf')
    resp.headers['Content-Disposition'] = f'attachment; filename=estimate-{est.id}.pdf'
    return resp


# Client-facing endpoints: no user session, no internal details in errors.

@bp.route('/<int:estimate_id>/client-view')
def get_client_view(estimate_id):
    est = store.get_estimate(estimate_id)
    return jsonify(status='success', data={'projectEstimate': client_view(est)})


@bp.route('/<int:estimate_id>/mark-viewed', methods=['PATCH'])
def mark_viewed(estimate_id):
    est = store.get_estimate(estimate_id)
    client.mark_as_viewed(est, _client_ip())
    db.session.commit()
    return jsonify(status='success', data={'projectEstimate': client_view(est)})


@bp.route('/<int:estimate_id>/client-accept', methods=['POST'])
def client_accept(estimate_id):
    est = store.get_estimate(estimate_id)
    data = request.get_json(silent=True) or {}
    try:
        client.accept_by_client(
            est,
            accepted_by=data.get('acceptedBy'),
            signature=data.get('signature'),
            ip_address=_client_ip(),
        )
    except StateConflict:
        return jsonify(status='fail', error=CLIENT_ERROR), 400
    db.session.commit()
    return jsonify(status='success', data={'projectEstimate': client_view(est)})


@bp.route('/<int:estimate_id>/client-reject', methods=['POST'])
def client_reject(estimate_id):
    est = store.get_estimate(estimate_id)
    data = request.get_json(silent=True) or {}
    try:
        client.reject_by_client(est, reason=data.get('reason'), ip_address=_client_ip())
    except StateConflict:
        return jsonify(status='fail', error=CLIENT_ERROR), 400
    db.session.commit()
    return jsonify(status='success', data={'projectEstimate': client_view(est)})
