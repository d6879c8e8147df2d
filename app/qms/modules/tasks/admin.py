from __future__ import annotations

from datetime import date

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import or_

from app.qms.audit import record_event
from app.qms.db import commit_or_raise, db_session
from app.qms.errors import NotFound, ValidationError
from app.qms.models import User
from app.qms.modules.documents.service import document_store
from app.qms.modules.notifications.service import notifier_from_config
from app.qms.modules.tasks.models import Task
from app.qms.modules.tasks.service import (
    STATUSES,
    add_comment,
    comment_payload,
    create_task,
    is_overdue,
    task_payload,
    update_task,
    validate_task_payload,
)
from app.qms.rbac import require_permission

bp = Blueprint("tasks", __name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _get_task(s, task_id: int) -> Task:
    task = s.get(Task, task_id)
    if not task:
        raise NotFound(f"Task {task_id} not found.")
    return task


def _assignee(s, raw) -> User:
    try:
        user_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("assigned_to must be a user id.") from None
    user = s.get(User, user_id)
    if user is None or not user.is_active:
        raise ValidationError(f"Unknown or inactive user: {user_id}")
    return user


@bp.get("/tasks")
@require_permission("tasks.view")
def tasks_list():
    s = db_session()
    q = s.query(Task)

    # Tasks the caller assigned or received.
    if request.args.get("mine") == "1":
        uid = g.current_user.id
        q = q.filter(or_(Task.assigned_to_user_id == uid, Task.assigned_by_user_id == uid))
    assigned_to = (request.args.get("assignedTo") or "").strip()
    if assigned_to:
        if not assigned_to.isdigit():
            raise ValidationError("assignedTo must be a user id.")
        q = q.filter(Task.assigned_to_user_id == int(assigned_to))

    status = (request.args.get("status") or "").strip()
    if status and status not in (*STATUSES, "overdue"):
        raise ValidationError(f"Invalid status filter: {status!r}")
    if status in STATUSES:
        q = q.filter(Task.status == status)

    tasks = q.order_by(Task.created_at.desc(), Task.id.desc()).all()
    today = date.today()
    if status == "overdue":
        tasks = [t for t in tasks if is_overdue(t, today)]
    return jsonify({"tasks": [task_payload(t, today=today) for t in tasks], "count": len(tasks)})


@bp.post("/tasks")
@require_permission("tasks.create")
def tasks_create():
    s = db_session()
    payload = _json_body()
    errors = validate_task_payload(payload, creating=True)
    if errors:
        raise ValidationError("Invalid task.", errors=errors)
    assignee = _assignee(s, payload.get("assigned_to"))

    document_id = (payload.get("document_id") or "").strip()
    if document_id:
        try:
            document_store(s).get(document_id)
        except NotFound:
            raise ValidationError(f"Document {document_id} does not exist.") from None

    notifier = notifier_from_config(current_app.config, s)
    task, notified = create_task(s, payload, assignee, g.current_user, notifier)
    commit_or_raise(s)
    return jsonify({"task": task_payload(task), "assigneeNotified": notified}), 201


@bp.get("/tasks/<int:task_id>")
@require_permission("tasks.view")
def task_detail(task_id: int):
    s = db_session()
    return jsonify({"task": task_payload(_get_task(s, task_id), include_comments=True)})


@bp.put("/tasks/<int:task_id>")
@require_permission("tasks.edit")
def task_edit(task_id: int):
    s = db_session()
    task = _get_task(s, task_id)
    payload = _json_body()
    errors = validate_task_payload(payload, creating=False)
    if errors:
        raise ValidationError("Invalid task.", errors=errors)
    update_task(s, task, payload, g.current_user)
    commit_or_raise(s)
    return jsonify({"task": task_payload(task, include_comments=True)})


@bp.delete("/tasks/<int:task_id>")
@require_permission("tasks.delete")
def task_delete(task_id: int):
    s = db_session()
    task = _get_task(s, task_id)
    record_event(
        s,
        actor=g.current_user,
        action="task.delete",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title},
    )
    s.delete(task)
    commit_or_raise(s)
    return jsonify({"deleted": task_id})


@bp.post("/tasks/<int:task_id>/comments")
@require_permission("tasks.edit")
def task_comment(task_id: int):
    s = db_session()
    task = _get_task(s, task_id)
    payload = _json_body()
    comment = payload.get("comment")
    if not isinstance(comment, str) or not comment.strip():
        raise ValidationError("comment is required.")
    c = add_comment(s, task, comment, g.current_user)
    commit_or_raise(s)
    return jsonify({"comment": comment_payload(c)}), 201
