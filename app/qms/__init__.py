import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.qms import models  # noqa: F401  (registers every table on Base.metadata)
from app.qms.config import load_config
from app.qms.db import init_db, teardown_db_session
from app.qms.errors import QmsError
from app.qms.routes import bp as routes_bp
from app.qms.auth import bp as auth_bp, load_current_user
from app.qms.admin import bp as admin_bp
from app.qms.modules.documents.admin import bp as documents_bp
from app.qms.modules.documents.service import init_document_store
from app.qms.modules.templates.admin import bp as templates_bp
from app.qms.modules.notifications.admin import bp as notifications_bp
from app.qms.modules.files.admin import bp as files_bp
from app.qms.modules.suppliers.admin import bp as suppliers_bp
from app.qms.modules.products.admin import bp as products_bp
from app.qms.modules.allergens.admin import bp as allergens_bp
from app.qms.modules.tasks.admin import bp as tasks_bp

logger = logging.getLogger(__name__)

# Mutating endpoints that run before a session (and its CSRF token) exists.
_CSRF_EXEMPT_ENDPOINTS = ("auth.login_post", "auth.csrf_token")


def _error_response(kind: str, message: str, status: int):
    return jsonify({"error": {"kind": kind, "message": message}}), status


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    # Allergen columns and other ordered mappings keep their insertion order.
    app.json.sort_keys = False
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.qms.security import ensure_csrf_token, validate_csrf

    # Registered first so g.request_id is set before any other hook logs.
    @app.before_request
    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        ensure_csrf_token()
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.endpoint in _CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                return _error_response("csrf", "CSRF token missing or invalid.", 400)
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("DOCUMENT_STORE") == "memory":
            raise RuntimeError("DOCUMENT_STORE=memory is not allowed in production.")

    init_db(app)
    init_document_store(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            if env in ("prod", "production"):
                raise RuntimeError(f"Missing required S3 env vars: {', '.join(missing_s3)}")
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/api")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(templates_bp, url_prefix="/api")
    app.register_blueprint(notifications_bp, url_prefix="/api")
    app.register_blueprint(files_bp, url_prefix="/api")
    app.register_blueprint(suppliers_bp, url_prefix="/api")
    app.register_blueprint(products_bp, url_prefix="/api")
    app.register_blueprint(allergens_bp, url_prefix="/api")
    app.register_blueprint(tasks_bp, url_prefix="/api")

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(QmsError)
    def _err_qms(e: QmsError):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if e.status_code >= 500:
            app.logger.error("%s on %s %s (request_id=%s): %s", e.kind, request.method, request.path, rid, e.message)
        else:
            app.logger.info("%s on %s %s (request_id=%s): %s", e.kind, request.method, request.path, rid, e.message)
        return jsonify({"error": e.to_dict()}), e.status_code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        if e.code == 413:
            limit_mb = app.config["MAX_UPLOAD_BYTES"] // (1024 * 1024)
            return _error_response("too_large", f"File too large. Maximum size is {limit_mb}MB.", 413)
        kind = (e.name or "error").lower().replace(" ", "_")
        return _error_response(kind, e.description or e.name, e.code or 500)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Ensure stack trace shows in the platform logs.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _error_response("internal", "Internal server error.", 500)

    logger.info("create_app() complete; app ready to serve")
    return app
