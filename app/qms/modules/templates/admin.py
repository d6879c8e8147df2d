from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.qms.db import commit_or_raise, db_session
from app.qms.errors import Conflict, NotFound, ValidationError
from app.qms.modules.templates.models import Template
from app.qms.modules.templates.schemas import CONTENT_SCHEMAS
from app.qms.modules.templates.service import (
    SqlTemplateRegistry,
    create_template,
    template_payload,
    update_template,
    validate_template_payload,
)
from app.qms.rbac import require_permission

bp = Blueprint("templates", __name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


@bp.get("/templates")
@require_permission("templates.view")
def templates_list():
    s = db_session()
    registry = SqlTemplateRegistry(s)
    include_inactive = (request.args.get("all") or "").strip() == "1"
    ttype = (request.args.get("type") or "").strip()
    if ttype:
        templates = registry.by_type(ttype, active_only=not include_inactive)
    else:
        templates = registry.list(active_only=not include_inactive)
    return jsonify({"templates": [template_payload(t, include_content=False) for t in templates]})


@bp.get("/templates/types")
@require_permission("templates.view")
def template_types():
    return jsonify(
        {
            "types": [
                {"type": sch.template_type, "label": sch.label, "sections": [name for name, _ in sch.sections]}
                for sch in CONTENT_SCHEMAS.values()
            ]
        }
    )


@bp.get("/templates/<template_id>")
@require_permission("templates.view")
def template_detail(template_id: str):
    s = db_session()
    tpl = SqlTemplateRegistry(s).get(template_id)
    if not tpl:
        raise NotFound(f"Template {template_id!r} not found.")
    return jsonify({"template": template_payload(tpl)})


@bp.post("/templates")
@require_permission("templates.manage")
def template_create():
    s = db_session()
    payload = _json_body()
    errors = validate_template_payload(payload, creating=True)
    if errors:
        raise ValidationError("Invalid template.", errors=errors)

    requested_id = (payload.get("id") or "").strip()
    if requested_id and s.get(Template, requested_id):
        raise Conflict(f"Template {requested_id!r} already exists.")

    tpl = create_template(s, payload, g.current_user)
    commit_or_raise(s)
    return jsonify({"template": template_payload(tpl)}), 201


@bp.put("/templates/<template_id>")
@require_permission("templates.manage")
def template_edit(template_id: str):
    s = db_session()
    tpl = s.get(Template, template_id)
    if not tpl:
        raise NotFound(f"Template {template_id!r} not found.")

    payload = _json_body()
    payload.setdefault("type", tpl.type)
    if payload["type"] != tpl.type:
        raise ValidationError("Template type cannot be changed.")
    errors = validate_template_payload(payload, creating=False)
    if errors:
        raise ValidationError("Invalid template.", errors=errors)

    update_template(s, tpl, payload, g.current_user, reason=(payload.get("reason") or "").strip() or None)
    commit_or_raise(s)
    return jsonify({"template": template_payload(tpl)})
