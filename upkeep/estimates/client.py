# upkeep/estimates/client.py
"""Client-facing interactions: view tracking, acceptance and rejection.

These run without an authenticated user; the client is identified only by
what they type (name, signature) and the request's IP address.
"""

from __future__ import annotations

from upkeep.estimates import lifecycle
from upkeep.models import utcnow


def mark_as_viewed(estimate, ip_address: str | None = None):
    interaction = estimate.interaction
    if not interaction.client_viewed:
        interaction.client_viewed = True
        interaction.viewed_at = utcnow()
    if ip_address:
        interaction.ip_address = ip_address
    return estimate


def accept_by_client(estimate, accepted_by: str | None = None,
                     signature: str | None = None, ip_address: str | None = None):
    lifecycle.ensure_transition(estimate, 'client_accepted')
    interaction = estimate.interaction
    previous = estimate.status
    estimate.status = 'client_accepted'
    if not interaction.client_accepted:
        interaction.client_accepted = True
        interaction.accepted_at = utcnow()
        interaction.accepted_by = accepted_by
        interaction.client_signature = signature
    if ip_address:
        interaction.ip_address = ip_address
    lifecycle.record_transition(estimate, previous, accepted_by or 'client')
    return estimate


def reject_by_client(estimate, reason: str | None = None, ip_address: str | None = None):
    reason = (reason or '').strip() or None
    lifecycle.ensure_transition(estimate, 'client_rejected')
    interaction = estimate.interaction
    previous = estimate.status
    estimate.status = 'client_rejected'
    if not interaction.client_rejected:
        interaction.client_rejected = True
        interaction.rejected_at = utcnow()
        interaction.client_rejection_reason = reason
    if ip_address:
        interaction.ip_address = ip_address
    lifecycle.record_transition(estimate, previous, 'client')
    return estimate
