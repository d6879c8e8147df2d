from __future__ import annotations

import copy
import re
from datetime import datetime
from typing import TYPE_CHECKING

from app.qms.audit import record_event
from app.qms.errors import text_field_errors
from app.qms.modules.templates.catalog import BUILTIN_TEMPLATES
from app.qms.modules.templates.models import Template
from app.qms.modules.templates.schemas import TEMPLATE_TYPES, schema_for

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.qms.models import User


class TemplateRegistry:
    """Read-mostly lookup of template definitions."""

    def get(self, template_id: str) -> Template | None:
        raise NotImplementedError

    def list(self, *, active_only: bool = True) -> list[Template]:
        raise NotImplementedError

    def by_type(self, template_type: str, *, active_only: bool = True) -> list[Template]:
        return [tpl for tpl in self.list(active_only=active_only) if tpl.type == template_type]


class CatalogTemplateRegistry(TemplateRegistry):
    """Static registry over the built-in catalog (no database)."""

    def __init__(self, definitions: tuple[dict, ...] = BUILTIN_TEMPLATES) -> None:
        self._templates: dict[str, Template] = {}
        for d in definitions:
            self._templates[d["id"]] = _template_from_definition(d)

    def get(self, template_id: str) -> Template | None:
        return self._templates.get(template_id)

    def list(self, *, active_only: bool = True) -> list[Template]:
        out = [tpl for tpl in self._templates.values() if tpl.is_active or not active_only]
        return sorted(out, key=lambda tpl: tpl.name)


class SqlTemplateRegistry(TemplateRegistry):
    def __init__(self, s: "Session") -> None:
        self.s = s

    def get(self, template_id: str) -> Template | None:
        return self.s.get(Template, template_id)

    def list(self, *, active_only: bool = True) -> list[Template]:
        q = self.s.query(Template)
        if active_only:
            q = q.filter(Template.is_active.is_(True))
        return q.order_by(Template.name.asc()).all()

    def by_type(self, template_type: str, *, active_only: bool = True) -> list[Template]:
        q = self.s.query(Template).filter(Template.type == template_type)
        if active_only:
            q = q.filter(Template.is_active.is_(True))
        return q.order_by(Template.name.asc()).all()


def _template_from_definition(d: dict) -> Template:
    now = datetime.utcnow()
    return Template(
        id=d["id"],
        name=d["name"],
        description=d.get("description"),
        type=d["type"],
        content=copy.deepcopy(d["content"]),
        is_active=d.get("is_active", True),
        created_at=now,
        updated_at=now,
    )


def seed_templates(s: "Session") -> int:
    """Insert missing built-in templates. Existing rows (and admin edits) are left alone."""
    created = 0
    for d in BUILTIN_TEMPLATES:
        if s.get(Template, d["id"]) is None:
            s.add(_template_from_definition(d))
            created += 1
    s.flush()
    return created


def slugify_template_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").strip().lower()).strip("-")
    return f"tmpl-{slug[:48]}" if slug else ""


def validate_template_payload(payload: dict, *, creating: bool) -> list[str]:
    errors = text_field_errors(payload, ("id", "name", "type", "description", "reason"))
    if errors:
        return errors
    name = (payload.get("name") or "").strip()
    if creating and not name:
        errors.append("Name is required.")
    ttype = (payload.get("type") or "").strip()
    if creating and not ttype:
        errors.append("Type is required.")
    if ttype and ttype not in TEMPLATE_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(TEMPLATE_TYPES)}")
    content = payload.get("content")
    if content is not None and ttype in TEMPLATE_TYPES:
        errors.extend(schema_for(ttype).validate(content))
    return errors


def create_template(s: "Session", payload: dict, user: "User") -> Template:
    ttype = payload["type"].strip()
    template_id = (payload.get("id") or "").strip() or slugify_template_id(payload["name"])
    content = payload.get("content")
    if content is None:
        content = schema_for(ttype).default_content()

    now = datetime.utcnow()
    tpl = Template(
        id=template_id,
        name=payload["name"].strip(),
        description=(payload.get("description") or "").strip() or None,
        type=ttype,
        content=content,
        is_active=bool(payload.get("is_active", True)),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(tpl)
    s.flush()

    record_event(
        s,
        actor=user,
        action="template.create",
        entity_type="Template",
        entity_id=tpl.id,
        metadata={"name": tpl.name, "type": tpl.type},
    )
    return tpl


def update_template(s: "Session", tpl: Template, payload: dict, user: "User", reason: str | None = None) -> Template:
    """Administrative edit. Documents keep the content they were instantiated with."""
    changes: dict[str, dict] = {}

    new_name = (payload.get("name") or "").strip()
    if new_name and new_name != tpl.name:
        changes["name"] = {"old": tpl.name, "new": new_name}
        tpl.name = new_name

    if "description" in payload:
        new_desc = (payload.get("description") or "").strip() or None
        if new_desc != tpl.description:
            changes["description"] = {"old": tpl.description, "new": new_desc}
            tpl.description = new_desc

    if "is_active" in payload:
        new_active = bool(payload["is_active"])
        if new_active != tpl.is_active:
            changes["is_active"] = {"old": tpl.is_active, "new": new_active}
            tpl.is_active = new_active

    if payload.get("content") is not None:
        changes["content"] = {"old": "(replaced)", "new": "(replaced)"}
        tpl.content = payload["content"]

    tpl.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="template.edit",
        entity_type="Template",
        entity_id=tpl.id,
        reason=reason,
        metadata={"name": tpl.name, "changes": changes},
    )
    return tpl


def template_payload(tpl: Template, *, include_content: bool = True) -> dict:
    out = {
        "id": tpl.id,
        "name": tpl.name,
        "description": tpl.description,
        "type": tpl.type,
        "isActive": tpl.is_active,
        "createdAt": tpl.created_at.isoformat() if tpl.created_at else None,
        "updatedAt": tpl.updated_at.isoformat() if tpl.updated_at else None,
    }
    if include_content:
        out["content"] = tpl.content
    return out
