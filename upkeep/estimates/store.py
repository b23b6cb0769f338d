# upkeep/estimates/store.py
"""Loading, filtering and editing project estimates and their line items."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func

from upkeep import db
from upkeep.errors import NotFound, StateConflict, ValidationError
from upkeep.estimates import lifecycle
from upkeep.estimates.photos import normalize_photo, purge_photos
from upkeep.estimates.totals import money, to_amount
from upkeep.models import (
    CONVERTED_STATUSES,
    ESTIMATE_STATUSES,
    PRIORITIES,
    TAX_TYPES,
    EstimateLineItem,
    ProjectEstimate,
    utcnow,
)

# JSON name -> column
ESTIMATE_FIELDS = {
    'title'            : 'title',
    'description'      : 'description',
    'building'         : 'building_id',
    'apartmentNumber'  : 'apartment_number',
    'estimatedCost'    : 'estimated_cost',
    'estimatedPrice'   : 'estimated_price',
    'estimatedDuration': 'estimated_duration',
    'visitDate'        : 'visit_date',
    'proposedStartDate': 'proposed_start_date',
    'targetYear'       : 'target_year',
    'priority'         : 'priority',
    'notes'            : 'notes',
    'clientNotes'      : 'client_notes',
}

# only changed through lifecycle / conversion operations
READ_ONLY_FIELDS = (
    'status', 'workOrderId', 'invoiceId', 'createdBy', 'approvedBy',
    'approvedAt', 'submittedAt', 'rejectionReason', 'clientInteraction',
)


def parse_datetime(value, field: str):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value, field: str):
    parsed = parse_datetime(value, field)
    return parsed.date() if parsed else None


def _int(value, field: str, minimum: int | None = None) -> int:
    try:
        num = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number") from None
    if minimum is not None and num < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return num


def _non_negative(value, field: str) -> float:
    num = to_amount(value)
    if num < 0:
        raise ValidationError(f"{field} cannot be negative")
    return num


def _clean_fields(data: dict, creating: bool) -> dict:
    """Validate the writable estimate fields in ``data``; returns column values."""
    blocked = [k for k in READ_ONLY_FIELDS if k in data]
    if blocked:
        raise ValidationError(f"Read-only field(s): {', '.join(blocked)}")

    values = {}
    for key, column in ESTIMATE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key in ('title', 'description'):
            value = (value or '').strip()
            if not value:
                raise ValidationError(f"Project {key} is required")
            if key == 'title' and len(value) > 200:
                raise ValidationError('Title cannot exceed 200 characters')
        elif key == 'building':
            value = _int(value, 'building')
        elif key in ('estimatedCost', 'estimatedPrice'):
            value = money(_non_negative(value, key))
        elif key == 'estimatedDuration':
            value = _int(value, key, minimum=1)
        elif key == 'targetYear':
            value = _int(value, key, minimum=2024)
        elif key == 'priority':
            if value not in PRIORITIES:
                raise ValidationError(f"Unknown priority '{value}'")
        elif key in ('visitDate', 'proposedStartDate'):
            value = parse_datetime(value, key)
        elif isinstance(value, str):
            value = value.strip()
        values[column] = value

    if creating:
        for key in ('title', 'description', 'building'):
            if ESTIMATE_FIELDS[key] not in values:
                raise ValidationError(f"Project {key} is required")
    return values


def get_estimate(estimate_id) -> ProjectEstimate:
    est = db.session.get(ProjectEstimate, estimate_id)
    if est is None:
        raise NotFound('Project estimate not found')
    return est


def apply_line_item(data: dict, item: EstimateLineItem | None = None) -> EstimateLineItem:
    """Validate ``data`` and write it onto ``item`` (a new one if None).

    On create an authored ``amount`` wins over qty x rate.  On update the
    amount is recomputed when qty or rate change and no amount is given.
    """
    creating = item is None
    if creating:
        item = EstimateLineItem(qty=1.0, rate=0.0, amount=0.0, tax=0.0,
                                tax_type='percentage', estimated_cost=0.0)

    qty = to_amount(data['qty']) if 'qty' in data else to_amount(item.qty)
    if qty < 0.01:
        raise ValidationError('Quantity must be at least 0.01')
    rate = _non_negative(data['rate'], 'rate') if 'rate' in data else to_amount(item.rate)

    if data.get('amount') is not None:
        amount = _non_negative(data['amount'], 'amount')
    elif creating or 'qty' in data or 'rate' in data:
        amount = qty * rate
    else:
        amount = to_amount(item.amount)

    tax_type = data.get('taxType', item.tax_type) or 'percentage'
    if tax_type not in TAX_TYPES:
        raise ValidationError(f"Unknown tax type '{tax_type}'")
    tax = _non_negative(data['tax'], 'tax') if 'tax' in data else to_amount(item.tax)
    cost = (_non_negative(data['estimatedCost'], 'estimatedCost')
            if 'estimatedCost' in data else to_amount(item.estimated_cost))

    if 'serviceDate' in data:
        service_date = parse_date(data['serviceDate'], 'serviceDate')
    elif creating:
        service_date = utcnow().date()
    else:
        service_date = item.service_date
    text = {attr: str(data[key] or '').strip()
            for key, attr in (('productService', 'product_service'),
                              ('description', 'description'),
                              ('notes', 'notes'), ('class', 'item_class'))
            if key in data}

    # nothing below raises
    item.qty = qty
    item.rate = money(rate)
    item.amount = money(amount)
    item.tax = tax
    item.tax_type = tax_type
    item.estimated_cost = money(cost)
    item.service_date = service_date
    for attr, value in text.items():
        setattr(item, attr, value)
    return item


def create_estimate(data: dict, created_by, photos=None) -> ProjectEstimate:
    if not created_by:
        raise ValidationError('createdBy is required')
    values = _clean_fields(data, creating=True)
    items = [apply_line_item(li) for li in data.get('lineItems') or []]
    stored_photos = [normalize_photo(p) for p in data.get('photos') or []]
    stored_photos.extend(photos or [])

    est = ProjectEstimate(created_by=str(created_by), status='draft',
                          photos=stored_photos, **values)
    for item in items:
        est.line_items.append(item)
    db.session.add(est)
    db.session.commit()
    logging.info("created estimate %s with %s line item(s)", est.id, len(items))
    return est


def update_estimate(est: ProjectEstimate, data: dict, photos=None) -> ProjectEstimate:
    lifecycle.ensure_mutable(est)
    values = _clean_fields(data, creating=False)
    new_photos = None
    if 'photos' in data or photos:
        current = ([normalize_photo(p) for p in data.get('photos') or []]
                   if 'photos' in data else list(est.photos or []))
        new_photos = current + list(photos or [])
    new_items = None
    if 'lineItems' in data:
        new_items = [apply_line_item(li) for li in data.get('lineItems') or []]

    dropped = []
    if new_photos is not None:
        kept = {p['url'] for p in new_photos}
        dropped = [p for p in est.photos or [] if p.get('url') not in kept]

    for column, value in values.items():
        setattr(est, column, value)
    if new_photos is not None:
        est.photos = new_photos
    if new_items is not None:
        est.line_items = new_items
    db.session.commit()
    # files go only after the new photo list is saved
    purge_photos(dropped)
    return est


def delete_estimate(est: ProjectEstimate) -> None:
    if est.status in CONVERTED_STATUSES or est.work_order_id or est.invoice_id:
        raise StateConflict(
            'Cannot delete project estimate that has been converted to a work order or invoice'
        )
    photos = list(est.photos or [])
    estimate_id = est.id
    db.session.delete(est)
    db.session.commit()
    purge_photos(photos)
    logging.info("deleted estimate %s", estimate_id)


def _find_line_item(est: ProjectEstimate, item_id) -> EstimateLineItem:
    for item in est.line_items:
        if str(item.id) == str(item_id):
            return item
    raise NotFound('Line item not found')


def add_line_item(est: ProjectEstimate, data: dict) -> EstimateLineItem:
    lifecycle.ensure_mutable(est)
    item = apply_line_item(data)
    est.line_items.append(item)
    db.session.commit()
    return item


def update_line_item(est: ProjectEstimate, item_id, data: dict) -> EstimateLineItem:
    lifecycle.ensure_mutable(est)
    item = apply_line_item(data, _find_line_item(est, item_id))
    db.session.commit()
    return item


def remove_line_item(est: ProjectEstimate, item_id) -> None:
    lifecycle.ensure_mutable(est)
    est.line_items.remove(_find_line_item(est, item_id))
    est.line_items.reorder()
    db.session.commit()


def filtered_query(args):
    """Build the list query from request args."""
    q = ProjectEstimate.query
    status = args.get('status')
    if status:
        if status not in ESTIMATE_STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        q = q.filter(ProjectEstimate.status == status)
    if args.get('building'):
        q = q.filter(ProjectEstimate.building_id == _int(args['building'], 'building'))
    if args.get('targetYear'):
        q = q.filter(ProjectEstimate.target_year == _int(args['targetYear'], 'targetYear'))
    if args.get('priority'):
        q = q.filter(ProjectEstimate.priority == args['priority'])
    start = parse_datetime(args.get('startDate'), 'startDate')
    end = parse_datetime(args.get('endDate'), 'endDate')
    if start:
        q = q.filter(ProjectEstimate.visit_date >= start)
    if end:
        q = q.filter(ProjectEstimate.visit_date <= end)
    return q


def paginate(query, args):
    page = _int(args.get('page', 1), 'page', minimum=1)
    limit = _int(args.get('limit', 10), 'limit', minimum=1)
    return query.paginate(page=page, per_page=limit, error_out=False)


def list_estimates(args):
    q = filtered_query(args).order_by(ProjectEstimate.created_at.desc(), ProjectEstimate.id.desc())
    return paginate(q, args)


def pending_approvals(args):
    q = (ProjectEstimate.query
         .filter(ProjectEstimate.status == 'pending')
         .order_by(ProjectEstimate.submitted_at.asc(), ProjectEstimate.id.asc()))
    return paginate(q, args)


def estimate_stats(year: int | None = None) -> dict:
    year = year or utcnow().year
    rows = (db.session.query(
                ProjectEstimate.status,
                func.count(ProjectEstimate.id),
                func.coalesce(func.sum(ProjectEstimate.estimated_price), 0),
                func.coalesce(func.sum(ProjectEstimate.estimated_cost), 0))
            .filter(ProjectEstimate.target_year == year)
            .group_by(ProjectEstimate.status)
            .all())
    summary = {
        'year': year,
        'totalProjects': 0,
        'totalEstimatedValue': 0.0,
        'totalEstimatedCost': 0.0,
        'totalEstimatedProfit': 0.0,
        'byStatus': {},
    }
    for status, count, value, cost in rows:
        summary['totalProjects'] += count
        summary['totalEstimatedValue'] += float(value)
        summary['totalEstimatedCost'] += float(cost)
        summary['byStatus'][status] = {'count': count, 'value': money(value), 'cost': money(cost)}
    summary['totalEstimatedValue'] = money(summary['totalEstimatedValue'])
    summary['totalEstimatedCost'] = money(summary['totalEstimatedCost'])
    summary['totalEstimatedProfit'] = money(
        summary['totalEstimatedValue'] - summary['totalEstimatedCost']
    )
    return summary
