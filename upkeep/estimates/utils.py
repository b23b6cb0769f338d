# upkeep/estimates/utils.py

"""JSON shapes for estimates and the records created from them."""

from upkeep.estimates.totals import money


def _iso(value):
    return value.isoformat() if value is not None else None


def serialize_line_item(item, client=False) -> dict:
    data = {
        'id'            : item.id,
        'serviceDate'   : _iso(item.service_date),
        'productService': item.product_service or '',
        'description'   : item.description or '',
        'qty'           : item.qty,
        'rate'          : money(item.rate),
        'amount'        : money(item.amount),
        'tax'           : item.tax,
        'taxType'       : item.tax_type or 'percentage',
        'taxAmount'     : item.tax_amount,
    }
    if not client:
        data.update({
            'estimatedCost': money(item.estimated_cost),
            'notes'        : item.notes or '',
            'class'        : item.item_class or '',
        })
    return data


def serialize_interaction(interaction) -> dict:
    if interaction is None:
        return {
            'sentToClient': False,
            'clientViewed': False,
            'clientAccepted': False,
            'clientRejected': False,
        }
    return {
        'sentToClient'         : interaction.sent_to_client,
        'sentAt'               : _iso(interaction.sent_at),
        'sentTo'               : interaction.sent_to,
        'clientViewed'         : interaction.client_viewed,
        'viewedAt'             : _iso(interaction.viewed_at),
        'clientAccepted'       : interaction.client_accepted,
        'acceptedAt'           : _iso(interaction.accepted_at),
        'acceptedBy'           : interaction.accepted_by,
        'clientSignature'      : interaction.client_signature,
        'clientRejected'       : interaction.client_rejected,
        'rejectedAt'           : _iso(interaction.rejected_at),
        'clientRejectionReason': interaction.client_rejection_reason,
        'ipAddress'            : interaction.ip_address,
    }


def serialize_estimate(est) -> dict:
    return {
        'id'                   : est.id,
        'title'                : est.title,
        'description'          : est.description,
        'building'             : est.building_id,
        'apartmentNumber'      : est.apartment_number,
        'estimatedCost'        : money(est.estimated_cost),
        'estimatedPrice'       : money(est.estimated_price),
        'estimatedProfit'      : est.estimated_profit,
        'estimatedProfitMargin': est.estimated_profit_margin,
        'lineItemsTotal'       : est.line_items_total,
        'lineItemsCost'        : est.line_items_cost,
        'estimatedDuration'    : est.estimated_duration,
        'visitDate'            : _iso(est.visit_date),
        'proposedStartDate'    : _iso(est.proposed_start_date),
        'targetYear'           : est.target_year,
        'status'               : est.status,
        'priority'             : est.priority,
        'photos'               : list(est.photos or []),
        'notes'                : est.notes,
        'clientNotes'          : est.client_notes,
        'rejectionReason'      : est.rejection_reason,
        'workOrderId'          : est.work_order_id,
        'invoiceId'            : est.invoice_id,
        'lineItems'            : [serialize_line_item(i) for i in est.line_items],
        'clientInteraction'    : serialize_interaction(est.client_interaction),
        'createdBy'            : est.created_by,
        'approvedBy'           : est.approved_by,
        'approvedAt'           : _iso(est.approved_at),
        'submittedAt'          : _iso(est.submitted_at),
        'createdAt'            : _iso(est.created_at),
        'updatedAt'            : _iso(est.updated_at),
    }


def client_view(est) -> dict:
    """What the client sees: no internal cost, margin, classes or notes."""
    interaction = est.client_interaction
    return {
        'id'               : est.id,
        'title'            : est.title,
        'description'      : est.description,
        'building'         : est.building_id,
        'apartmentNumber'  : est.apartment_number,
        'estimatedPrice'   : money(est.estimated_price),
        'estimatedDuration': est.estimated_duration,
        'proposedStartDate': _iso(est.proposed_start_date),
        'status'           : est.status,
        'photos'           : list(est.photos or []),
        'clientNotes'      : est.client_notes,
        'lineItems'        : [serialize_line_item(i, client=True) for i in est.line_items],
        'clientViewed'     : bool(interaction and interaction.client_viewed),
        'clientAccepted'   : bool(interaction and interaction.client_accepted),
        'clientRejected'   : bool(interaction and interaction.client_rejected),
    }


def serialize_work_order(wo) -> dict:
    return {
        'id'             : wo.id,
        'title'          : wo.title,
        'description'    : wo.description,
        'building'       : wo.building_id,
        'apartmentNumber': wo.apartment_number,
        'estimatedCost'  : money(wo.estimated_cost),
        'price'          : money(wo.price),
        'scheduledDate'  : _iso(wo.scheduled_date),
        'photos'         : list(wo.photos or []),
        'notes'          : wo.notes,
        'status'         : wo.status,
        'createdBy'      : wo.created_by,
        'projectEstimate': wo.project_estimate_id,
    }


def serialize_invoice(inv) -> dict:
    return {
        'id'             : inv.id,
        'invoiceNumber'  : inv.invoice_number,
        'projectEstimate': inv.project_estimate_id,
        'building'       : inv.building_id,
        'apartmentNumber': inv.apartment_number,
        'description'    : inv.description,
        'subtotal'       : money(inv.subtotal),
        'tax'            : money(inv.tax),
        'total'          : money(inv.total),
        'status'         : inv.status,
        'invoiceDate'    : _iso(inv.invoice_date),
        'dueDate'        : _iso(inv.due_date),
        'notes'          : inv.notes,
        'createdBy'      : inv.created_by,
        'lineItems'      : [{
            'id'         : li.id,
            'workOrder'  : li.work_order_id,
            'description': li.description,
            'quantity'   : li.quantity,
            'unitPrice'  : money(li.unit_price),
            'totalPrice' : money(li.total_price),
        } for li in inv.line_items],
    }
