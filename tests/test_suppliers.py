"""Tests for Suppliers module."""
import json
from datetime import date, timedelta

import pytest
from werkzeug.security import generate_password_hash

from app.qms import create_app
from app.qms.db import session_scope
from app.qms.models import AuditEvent, Base, Permission, Role, User
from app.qms.modules.templates.service import seed_templates


def _seed_all_permissions(s):
    """Seed all permissions needed for supplier tests."""
    perm_keys = [
        ("suppliers.view", "Suppliers: view"),
        ("suppliers.create", "Suppliers: create"),
        ("suppliers.edit", "Suppliers: edit"),
        ("docs.create", "Documents: create"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "DOCUMENT_STORE"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        perms = _seed_all_permissions(s)
        r = Role(key="admin", name="Administrator")
        for p in perms:
            r.permissions.append(p)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([r, u])
        seed_templates(s)

    return app.test_client()


def _login(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200


def _create(client, **payload):
    r = client.post("/api/suppliers", json=payload)
    assert r.status_code == 201, r.json
    return r.json["supplier"]


def test_suppliers_list_requires_auth(client):
    r = client.get("/api/suppliers")
    assert r.status_code == 401


def test_supplier_create(client):
    _login(client)
    supplier = _create(
        client,
        name="Nutra Labs",
        status="Approved",
        category="Co-Manufacturer",
        materials_supplied="Softgels, capsules",
        certification_expiration="2027-01-31",
        custom_fields={"gfsi": "SQF"},
    )
    assert supplier["name"] == "Nutra Labs"
    assert supplier["status"] == "Approved"
    assert supplier["certification_expiration"] == "2027-01-31"
    assert supplier["custom_fields"] == {"gfsi": "SQF"}
    assert supplier["contact_email"] is None


def test_supplier_defaults_to_pending(client):
    _login(client)
    assert _create(client, name="New Vendor")["status"] == "Pending"


@pytest.mark.parametrize(
    "payload",
    [
        {"status": "Approved"},
        {"name": "Bad status", "status": "Preferred"},
        {"name": "Bad date", "initial_listing_date": "03/01/2026"},
        {"name": "Bad custom", "custom_fields": ["x"]},
        {"name": 42},
        {"name": "Typed notes", "notes": ["a", "b"]},
    ],
)
def test_supplier_create_validation(client, payload):
    _login(client)
    r = client.post("/api/suppliers", json=payload)
    assert r.status_code == 400
    assert r.json["error"]["kind"] == "validation"


def test_suppliers_list_filters(client):
    _login(client)
    soon = (date.today() + timedelta(days=10)).isoformat()
    later = (date.today() + timedelta(days=365)).isoformat()
    _create(client, name="Bottle Co", status="Approved", category="Packaging", certification_expiration=later)
    _create(client, name="Herb Farm", status="Conditional", category="Raw Material", materials_supplied="Ashwagandha root", certification_expiration=soon)
    _create(client, name="Label Print", status="Pending", category="Packaging")

    r = client.get("/api/suppliers")
    assert r.status_code == 200
    assert [x["name"] for x in r.json["suppliers"]] == ["Bottle Co", "Herb Farm", "Label Print"]
    assert r.json["categories"] == ["Packaging", "Raw Material"]

    assert [x["name"] for x in client.get("/api/suppliers?q=ashwa").json["suppliers"]] == ["Herb Farm"]
    assert [x["name"] for x in client.get("/api/suppliers?status=Pending").json["suppliers"]] == ["Label Print"]
    assert len(client.get("/api/suppliers?category=Packaging").json["suppliers"]) == 2
    assert [x["name"] for x in client.get("/api/suppliers?expiring=1").json["suppliers"]] == ["Herb Farm"]


def test_supplier_detail_lists_linked_documents(client):
    _login(client)
    supplier = _create(client, name="Herb Farm", category="Raw Material")

    r = client.post(
        "/api/documents",
        json={"templateId": "tmpl-raw-material", "title": "Ashwagandha spec", "supplierId": supplier["id"]},
    )
    assert r.status_code == 201

    r = client.get(f"/api/suppliers/{supplier['id']}")
    assert r.status_code == 200
    assert r.json["supplier"]["name"] == "Herb Farm"
    assert [d["title"] for d in r.json["documents"]] == ["Ashwagandha spec"]
    assert r.json["files"] == []

    assert client.get("/api/suppliers/9999").status_code == 404


def test_supplier_partial_update_is_audited(client):
    _login(client)
    supplier = _create(client, name="Herb Farm", status="Pending", phone="555-0100")

    r = client.put(
        f"/api/suppliers/{supplier['id']}",
        json={"status": "Approved", "notes": "Audit passed", "reason": "Annual audit"},
    )
    assert r.status_code == 200
    updated = r.json["supplier"]
    assert updated["status"] == "Approved"
    assert updated["notes"] == "Audit passed"
    assert updated["phone"] == "555-0100"

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "supplier.edit").one()
        assert ev.reason == "Annual audit"
        changes = json.loads(ev.metadata_json)["changes"]
        assert set(changes) == {"status", "notes"}

    r = client.put(f"/api/suppliers/{supplier['id']}", json={"status": "Blocked"})
    assert r.status_code == 400
