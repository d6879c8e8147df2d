from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from app.qms.audit import record_event
from app.qms.errors import text_field_errors
from app.qms.modules.notifications.service import KIND_TASK, NotificationMessage, Notifier, fan_out
from app.qms.modules.suppliers.service import parse_date
from app.qms.modules.tasks.models import Task, TaskComment

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User

logger = logging.getLogger(__name__)

TASK_TYPES = (
    "COA",
    "COC",
    "Shelf-Life Program",
    "Finished Goods Spec",
    "Raw Material Spec",
    "Supplier Qualification",
    "Co-Man Qualification",
    "Label Testing",
    "CCR",
    "Other Documents",
    "PSF",
    "MMR",
    "Batch Record",
    "UPC",
)
PRIORITIES = ("low", "medium", "high", "urgent")
STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_COMPLETED)


def is_overdue(task: Task, today: date | None = None) -> bool:
    if task.status == STATUS_COMPLETED or task.due_date is None:
        return False
    return task.due_date < (today or date.today())


def validate_task_payload(payload: dict, *, creating: bool = True) -> list[str]:
    """Shape checks only; the assignee and linked document are checked against the database by the caller."""
    errors = text_field_errors(payload, ("title", "description", "task_type", "priority", "status", "document_id"))
    if errors:
        return errors
    if creating and not (payload.get("title") or "").strip():
        errors.append("Title is required.")
    if "title" in payload and not creating and not (payload.get("title") or "").strip():
        errors.append("Title cannot be blank.")
    task_type = (payload.get("task_type") or "").strip()
    if creating and not task_type:
        errors.append("Task type is required.")
    if task_type and task_type not in TASK_TYPES:
        errors.append(f"Invalid task type. Must be one of: {', '.join(TASK_TYPES)}")
    if creating and payload.get("assigned_to") in (None, ""):
        errors.append("assigned_to is required.")
    priority = (payload.get("priority") or "").strip()
    if priority and priority not in PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(PRIORITIES)}")
    status = (payload.get("status") or "").strip()
    if status and status not in STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(STATUSES)}")
    try:
        parse_date(payload.get("due_date"))
    except (TypeError, ValueError):
        errors.append("due_date must be a YYYY-MM-DD date.")
    return errors


def _notify_assignee(notifier: Notifier, task: Task, user: "User") -> bool:
    message = NotificationMessage(
        kind=KIND_TASK,
        title=f"New task: {task.title}",
        body=f"{user.display_name} assigned you a {task.task_type} task \"{task.title}\".",
        document_id=task.document_id,
        sender_user_id=user.id,
        sender_name=user.display_name,
    )
    notified, _failed = fan_out(notifier, [task.assigned_to_user_id], message)
    return bool(notified)


def create_task(s: "Session", payload: dict, assignee: "User", user: "User", notifier: Notifier) -> tuple[Task, bool]:
    """Creates a pending task and notifies the assignee; returns (task, assignee_notified)."""
    now = datetime.utcnow()
    task = Task(
        title=payload["title"].strip(),
        description=(payload.get("description") or "").strip() or None,
        task_type=payload["task_type"].strip(),
        assigned_to_user_id=assignee.id,
        assigned_by_user_id=user.id,
        priority=(payload.get("priority") or "medium").strip(),
        status=STATUS_PENDING,
        due_date=parse_date(payload.get("due_date")),
        document_id=(payload.get("document_id") or "").strip() or None,
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()

    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "task_type": task.task_type, "assigned_to": assignee.id},
    )
    notified = _notify_assignee(notifier, task, user)
    logger.info("Task %s assigned to user %s by %s (notified=%s)", task.id, assignee.id, user.email, notified)
    return task, notified


def update_task(s: "Session", task: Task, payload: dict, user: "User") -> Task:
    """Partial update. Completing stamps ``completed_at``; leaving completed clears it."""
    changes = {}

    new_title = (payload.get("title") or "").strip()
    if new_title and new_title != task.title:
        changes["title"] = {"old": task.title, "new": new_title}
        task.title = new_title

    if "description" in payload:
        new_desc = (payload.get("description") or "").strip() or None
        if new_desc != task.description:
            changes["description"] = {"old": task.description, "new": new_desc}
            task.description = new_desc

    for field in ("priority", "status"):
        new_value = (payload.get(field) or "").strip()
        if new_value and new_value != getattr(task, field):
            changes[field] = {"old": getattr(task, field), "new": new_value}
            setattr(task, field, new_value)

    if "due_date" in payload:
        new_due = parse_date(payload.get("due_date"))
        if new_due != task.due_date:
            changes["due_date"] = {"old": str(task.due_date), "new": str(new_due)}
            task.due_date = new_due

    if "status" in changes:
        task.completed_at = datetime.utcnow() if task.status == STATUS_COMPLETED else None

    task.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="task.edit",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "changes": changes},
    )
    return task


def add_comment(s: "Session", task: Task, comment: str, user: "User") -> TaskComment:
    c = TaskComment(task_id=task.id, user_id=user.id, comment=comment.strip(), created_at=datetime.utcnow())
    s.add(c)
    task.updated_at = c.created_at
    s.flush()
    record_event(s, actor=user, action="task.comment", entity_type="Task", entity_id=str(task.id))
    return c


def _user_ref(u) -> dict | None:
    if u is None:
        return None
    return {"id": u.id, "email": u.email, "name": u.display_name}


def comment_payload(c: TaskComment) -> dict:
    return {
        "id": c.id,
        "comment": c.comment,
        "user": _user_ref(c.user),
        "createdAt": c.created_at.isoformat() if c.created_at else None,
    }


def task_payload(task: Task, *, include_comments: bool = False, today: date | None = None) -> dict:
    out = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "taskType": task.task_type,
        "priority": task.priority,
        "status": task.status,
        "overdue": is_overdue(task, today),
        "dueDate": task.due_date.isoformat() if task.due_date else None,
        "completedAt": task.completed_at.isoformat() if task.completed_at else None,
        "documentId": task.document_id,
        "assignedTo": _user_ref(task.assigned_to),
        "assignedBy": _user_ref(task.assigned_by),
        "createdAt": task.created_at.isoformat() if task.created_at else None,
        "updatedAt": task.updated_at.isoformat() if task.updated_at else None,
    }
    if include_comments:
        out["comments"] = [comment_payload(c) for c in task.comments]
    return out
