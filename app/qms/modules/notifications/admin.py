from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.qms.db import commit_or_raise, db_session
from app.qms.errors import NotFound
from app.qms.modules.notifications.models import Notification
from app.qms.modules.notifications.service import notification_payload
from app.qms.rbac import require_login

bp = Blueprint("notifications", __name__)


@bp.get("/notifications")
@require_login
def notifications_list():
    s = db_session()
    q = s.query(Notification).filter(Notification.user_id == g.current_user.id)
    if (request.args.get("unread") or "").strip() == "1":
        q = q.filter(Notification.is_read.is_(False))
    items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(200).all()
    return jsonify({"notifications": [notification_payload(n) for n in items]})


@bp.post("/notifications/<int:notification_id>/read")
@require_login
def notification_mark_read(notification_id: int):
    s = db_session()
    n = s.get(Notification, notification_id)
    # Other users' inbox rows are reported as missing.
    if not n or n.user_id != g.current_user.id:
        raise NotFound(f"Notification {notification_id} not found.")
    n.is_read = True
    commit_or_raise(s)
    return jsonify({"notification": notification_payload(n)})
