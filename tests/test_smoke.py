from collections import defaultdict

import pytest
from sqlalchemy import create_engine
from werkzeug.security import generate_password_hash

from app.qms import auth, create_app
from app.qms.db import session_scope
from app.qms.models import AuditEvent, Base, Permission, Role, User
from app.qms.modules.templates.service import seed_templates


def _env(tmp_path, monkeypatch, **overrides):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "DOCUMENT_STORE"):
        monkeypatch.delenv(k, raising=False)
    for k, v in overrides.items():
        monkeypatch.setenv(k, v)
    monkeypatch.setattr(auth, "_login_attempts", defaultdict(list))


def _seeded_app():
    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = [Permission(key=k, name=k) for k in ("admin.view", "docs.view", "docs.create", "templates.view")]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        u = User(email="admin@example.com", name="Alex Admin", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        off = User(email="gone@example.com", password_hash=generate_password_hash("pw"), is_active=False)
        s.add_all([*perms, r, u, off])
        seed_templates(s)
    return app


@pytest.fixture()
def client(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch)
    return _seeded_app().test_client()


def _login(client, password="pw", email="admin@example.com"):
    return client.post("/auth/login", json={"email": email, "password": password})


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json == {"ok": True, "database": "ok", "documentStore": "sql"}

    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_health_reports_unreachable_database(client, tmp_path):
    # A SQLite file under a directory that does not exist cannot be opened.
    client.application.extensions["sqlalchemy_engine"] = create_engine(f"sqlite:///{tmp_path / 'missing' / 'qms.db'}")

    r = client.get("/health")
    assert r.status_code == 503
    assert r.json["ok"] is False
    assert r.json["database"] == "unavailable"

    assert client.get("/healthz").status_code == 200


def test_index(client):
    assert client.get("/").json == {"service": "brh-qms", "api": "/api"}
    assert list(client.get("/").json) == ["service", "api"]


def test_unknown_route_uses_error_envelope(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json["error"]["kind"] == "not_found"


def test_login_and_me(client):
    assert client.get("/auth/me").status_code == 401

    r = _login(client)
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"
    assert r.json["user"]["name"] == "Alex Admin"
    assert r.json["user"]["roles"] == ["admin"]
    assert r.json["csrf_token"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"

    assert client.post("/auth/logout").json == {"ok": True}
    assert client.get("/auth/me").status_code == 401


def test_login_form_post(client):
    r = client.post("/auth/login", data={"email": "Admin@Example.com ", "password": "pw"})
    assert r.status_code == 200


def test_bad_login_is_audited(client):
    r = _login(client, password="wrong")
    assert r.status_code == 401
    assert r.json["error"]["kind"] == "unauthorized"
    assert _login(client, email="gone@example.com").status_code == 401

    with session_scope(client.application) as s:
        failed = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count()
    assert failed == 2


def test_login_rate_limit(client):
    for _ in range(5):
        assert _login(client, password="wrong").status_code == 401
    r = _login(client)
    assert r.status_code == 429
    assert r.json["error"]["kind"] == "rate_limited"


def test_users_search_and_audit(client):
    _login(client)

    users = client.get("/api/users").json["users"]
    assert [u["email"] for u in users] == ["admin@example.com"]

    r = client.post("/api/documents", json={"templateId": "tmpl-coa", "title": "Batch 100 COA"})
    assert r.status_code == 201

    assert client.get("/api/search?q=a").status_code == 400
    r = client.get("/api/search?q=analysis")
    assert [t["id"] for t in r.json["templates"]] == ["tmpl-coa"]
    r = client.get("/api/search", query_string={"q": "batch 100"})
    assert [d["title"] for d in r.json["documents"]] == ["Batch 100 COA"]
    assert r.json["products"] == [] and r.json["suppliers"] == []

    events = client.get("/api/audit?action=document").json["events"]
    assert [e["action"] for e in events] == ["document.create"]
    assert events[0]["actor"] == "admin@example.com"


def test_csrf_required_when_enabled(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch, CSRF_ENABLED="1")
    client = _seeded_app().test_client()

    r = _login(client)
    assert r.status_code == 200
    token = r.json["csrf_token"]
    assert client.get("/auth/csrf").json["csrf_token"] == token

    r = client.post("/api/documents", json={"templateId": "tmpl-coa", "title": "No token"})
    assert r.status_code == 400
    assert r.json["error"]["kind"] == "csrf"

    r = client.post(
        "/api/documents",
        json={"templateId": "tmpl-coa", "title": "With token"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201

    assert client.post("/auth/logout", headers={"X-CSRF-Token": "forged"}).status_code == 400
    assert client.post("/auth/logout", headers={"X-CSRF-Token": token}).status_code == 200


@pytest.mark.parametrize(
    "overrides",
    [
        {"DATABASE_URL": "sqlite:///prod.db"},
        {"DATABASE_URL": "postgresql://qms:pw@db/qms", "SECRET_KEY": "change-me"},
        {"DATABASE_URL": "postgresql://qms:pw@db/qms", "DOCUMENT_STORE": "memory"},
    ],
)
def test_production_guardrails(tmp_path, monkeypatch, overrides):
    _env(tmp_path, monkeypatch, ENV="production", **overrides)
    with pytest.raises(RuntimeError):
        create_app()


def test_unknown_document_store_is_rejected(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch, DOCUMENT_STORE="redis")
    with pytest.raises(RuntimeError):
        create_app()


def test_audit_filters(client):
    _login(client, password="wrong")
    _login(client)
    for title in ("Batch 1 COA", "Batch 2 COA"):
        assert client.post("/api/documents", json={"templateId": "tmpl-coa", "title": title}).status_code == 201

    events = client.get("/api/audit?entity_type=Document").json["events"]
    assert [e["metadata"]["title"] for e in events] == ["Batch 2 COA", "Batch 1 COA"]
    assert all(e["entityType"] == "Document" for e in events)

    doc_id = events[-1]["entityId"]
    events = client.get("/api/audit", query_string={"entity_id": doc_id}).json["events"]
    assert [e["metadata"]["title"] for e in events] == ["Batch 1 COA"]

    events = client.get("/api/audit?actor=ADMIN@example.com").json["events"]
    assert [e["action"] for e in events] == ["document.create", "document.create", "auth.login"]

    events = client.get("/api/audit?limit=1").json["events"]
    assert len(events) == 1
    assert events[0]["metadata"]["title"] == "Batch 2 COA"

    # Zero is clamped to a single row rather than treated as "no limit".
    assert len(client.get("/api/audit?limit=0").json["events"]) == 1

    r = client.get("/api/audit?limit=ten")
    assert r.status_code == 400
    assert r.json["error"]["kind"] == "validation"


def test_login_rotates_csrf_token(tmp_path, monkeypatch):
    _env(tmp_path, monkeypatch, CSRF_ENABLED="1")
    client = _seeded_app().test_client()

    before = client.get("/auth/csrf").json["csrf_token"]
    r = _login(client)
    assert r.status_code == 200
    after = r.json["csrf_token"]
    assert after and after != before

    r = client.post(
        "/api/documents",
        json={"templateId": "tmpl-coa", "title": "Old token"},
        headers={"X-CSRF-Token": before},
    )
    assert r.status_code == 400
    assert r.json["error"]["kind"] == "csrf"

    # The token is also accepted as a JSON member for clients that cannot set headers.
    r = client.post("/api/documents", json={"templateId": "tmpl-coa", "title": "New token", "csrf_token": after})
    assert r.status_code == 201
