from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify({"service": "brh-qms", "api": "/api"})


@bp.get("/health")
def health():
    """
    Readiness: the database answers and the configured document store is
    reported, so a deploy pointed at the wrong backend shows up here.
    """
    engine = current_app.extensions["sqlalchemy_engine"]
    store = current_app.config.get("DOCUMENT_STORE") or "sql"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        current_app.logger.error("Health check: database unavailable: %s", e.__class__.__name__)
        return jsonify({"ok": False, "database": "unavailable", "documentStore": store}), 503
    return jsonify({"ok": True, "database": "ok", "documentStore": store})


@bp.get("/healthz")
def healthz():
    # Liveness only; no database round trip.
    return "ok", 200
