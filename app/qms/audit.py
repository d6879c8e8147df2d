"""
Append-only audit trail.

Every mutation the QMS cares about (document workflow steps, file traffic,
catalog edits, tasks, logins) writes one ``AuditEvent`` through
``record_event`` in the same transaction as the change itself, so a rolled
back change leaves no trail entry behind.
"""

import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.qms.models import AuditEvent, User

MAX_EVENTS = 200


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    # Scripts run outside a request; they simply carry no request id or IP.
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def query_events(
    s: Session,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_email: str | None = None,
    limit: int = MAX_EVENTS,
) -> list[AuditEvent]:
    """Newest first. ``action`` matches as a substring, so ``document`` finds every document step."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.ilike(f"%{action}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email == actor_email.strip().lower())
    limit = max(1, min(limit, MAX_EVENTS))
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def event_payload(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "createdAt": ev.created_at.isoformat() if ev.created_at else None,
        "requestId": ev.request_id,
        "actor": ev.actor_user_email,
        "action": ev.action,
        "entityType": ev.entity_type,
        "entityId": ev.entity_id,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
    }
