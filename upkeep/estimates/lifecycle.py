# upkeep/estimates/lifecycle.py
"""Status transitions for project estimates.

Every function validates its inputs and the current status before touching
the estimate, so a failed call leaves the record exactly as it was.  Callers
own the commit.
"""

from __future__ import annotations

import logging

from upkeep import events
from upkeep.errors import StateConflict, ValidationError
from upkeep.models import CONVERTED_STATUSES, ESTIMATE_STATUSES, utcnow

# target status -> statuses it may be entered from
TRANSITIONS = {
    'submitted': ('draft', 'pending'),
    'pending': tuple(s for s in ESTIMATE_STATUSES if s not in CONVERTED_STATUSES),
    'approved': ('pending',),
    'rejected': ('pending',),
    'converted_to_workorder': ('approved',),
    'converted_to_invoice': ('approved',),
    'client_accepted': ('pending',),
    'client_rejected': ('pending',),
}


def can_transition(current: str, target: str) -> bool:
    if current in CONVERTED_STATUSES:
        return False
    return current in TRANSITIONS.get(target, ())


def ensure_transition(estimate, target: str) -> None:
    if not can_transition(estimate.status, target):
        raise StateConflict(
            f"Cannot move project estimate from '{estimate.status}' to '{target}'"
        )


def ensure_mutable(estimate) -> None:
    if estimate.status in CONVERTED_STATUSES:
        raise StateConflict('Converted project estimates cannot be modified')


def record_transition(estimate, previous: str, actor=None) -> None:
    logging.info(
        "estimate %s: %s -> %s (actor=%s)", estimate.id, previous, estimate.status, actor
    )
    events.publish(
        f'estimate.{estimate.status}',
        {'id': estimate.id, 'from': previous, 'to': estimate.status, 'actor': actor},
    )


def submit(estimate, client_email: str | None, actor=None):
    """Send the estimate to the client and mark it submitted."""
    client_email = (client_email or '').strip()
    if not client_email:
        raise ValidationError('Client email is required')
    ensure_transition(estimate, 'submitted')

    now = utcnow()
    previous = estimate.status
    estimate.status = 'submitted'
    if estimate.submitted_at is None:
        estimate.submitted_at = now
    interaction = estimate.interaction
    if not interaction.sent_to_client:
        interaction.sent_to_client = True
        interaction.sent_at = now
    interaction.sent_to = client_email

    record_transition(estimate, previous, actor)
    events.publish('estimate.sent', {
        'id': estimate.id,
        'title': estimate.title,
        'clientEmail': client_email,
        'estimatedPrice': estimate.estimated_price,
    })
    return estimate


def mark_pending(estimate, actor=None):
    """Queue the estimate for approval; re-entering pending is a no-op."""
    if estimate.status == 'pending':
        return estimate
    ensure_transition(estimate, 'pending')
    previous = estimate.status
    estimate.status = 'pending'
    if estimate.submitted_at is None:
        estimate.submitted_at = utcnow()
    record_transition(estimate, previous, actor)
    return estimate


def approve(estimate, approver_id):
    if not approver_id:
        raise ValidationError('An approving user is required')
    ensure_transition(estimate, 'approved')
    previous = estimate.status
    estimate.status = 'approved'
    if estimate.approved_by is None:
        estimate.approved_by = str(approver_id)
    if estimate.approved_at is None:
        estimate.approved_at = utcnow()
    record_transition(estimate, previous, approver_id)
    return estimate


def reject(estimate, reason: str | None, actor=None):
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A rejection reason is required')
    ensure_transition(estimate, 'rejected')
    previous = estimate.status
    estimate.status = 'rejected'
    estimate.rejection_reason = reason
    record_transition(estimate, previous, actor)
    return estimate


def review(estimate, approved: bool, actor=None, rejection_reason: str | None = None):
    """Single approve-or-reject entry point used by the approval screen."""
    if approved:
        return approve(estimate, actor)
    return reject(estimate, rejection_reason, actor)


def mark_converted(estimate, target: str, actor=None):
    ensure_transition(estimate, target)
    previous = estimate.status
    estimate.status = target
    record_transition(estimate, previous, actor)
    return estimate
