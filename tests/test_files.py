import hashlib
import io
import re
from datetime import date

import pytest
from werkzeug.security import generate_password_hash

from app.qms import create_app
from app.qms.db import session_scope
from app.qms.errors import NotFound, StorageError, ValidationError
from app.qms.models import Base, Permission, Role, User
from app.qms.modules.files.models import StoredFile
from app.qms.modules.files.service import build_storage_key, parse_destinations, storage_prefix
from app.qms.modules.products.models import Product
from app.qms.modules.templates.service import seed_templates
from app.qms.storage import LocalStorage, S3Storage, storage_from_config

PERMS = ("files.upload", "files.download", "files.delete", "docs.create", "docs.delete")


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MAX_UPLOAD_MB", "1")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "DOCUMENT_STORE"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        perms = [Permission(key=k, name=k) for k in PERMS]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([*perms, r, u])
        s.add(Product(sku="BFPC", product_name="PC Liquid", brand="BodyBio"))
        seed_templates(s)

    c = app.test_client()
    r = c.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    return c


def _upload(client, data=b"%PDF-1.4 label artwork", filename="BFPC Label v2.pdf", **form):
    form.setdefault("document_type", "Label")
    form.setdefault("destinations", '["labels", "products"]')
    return client.post(
        "/api/files",
        data={"file": (io.BytesIO(data), filename), **form},
        content_type="multipart/form-data",
    )


def test_local_storage_roundtrip(tmp_path):
    storage = LocalStorage(root=tmp_path)
    storage.put_bytes("labels/2026-01-05/abc_label.pdf", b"bytes")

    assert storage.exists("labels/2026-01-05/abc_label.pdf")
    with storage.open("labels/2026-01-05/abc_label.pdf") as fh:
        assert fh.read() == b"bytes"

    storage.delete("labels/2026-01-05/abc_label.pdf")
    assert not storage.exists("labels/2026-01-05/abc_label.pdf")
    # Deleting twice is harmless.
    storage.delete("labels/2026-01-05/abc_label.pdf")
    with pytest.raises(NotFound):
        storage.open("labels/2026-01-05/abc_label.pdf")


def test_local_storage_rejects_keys_outside_root(tmp_path):
    storage = LocalStorage(root=tmp_path / "root")
    with pytest.raises(StorageError):
        storage.put_bytes("../outside.txt", b"x")


def test_storage_from_config(tmp_path):
    local = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path)})
    assert isinstance(local, LocalStorage)
    assert local.root == tmp_path

    s3 = storage_from_config(
        {
            "STORAGE_BACKEND": "s3",
            "S3_ENDPOINT": "nyc3.digitaloceanspaces.com",
            "S3_BUCKET": "qms-files",
            "S3_ACCESS_KEY_ID": "key",
            "S3_SECRET_ACCESS_KEY": "secret",
        }
    )
    assert isinstance(s3, S3Storage)
    assert s3.region == "nyc3"
    assert s3.public_url("/labels/a.pdf") == "https://qms-files.nyc3.digitaloceanspaces.com/labels/a.pdf"


def test_parse_destinations():
    assert parse_destinations('["labels", "products", "labels"]') == ["labels", "products"]
    assert parse_destinations("suppliers, general") == ["suppliers", "general"]
    assert parse_destinations("") == []
    with pytest.raises(ValidationError):
        parse_destinations('["labels"')
    with pytest.raises(ValidationError):
        parse_destinations("marketing")


@pytest.mark.parametrize(
    "destinations,prefix",
    [
        (["products", "labels"], "labels"),
        (["rawMaterials", "shelfLife"], "shelf-life"),
        (["suppliers"], "suppliers"),
        (["rawMaterials"], "raw-materials"),
        (["general"], "general"),
        ([], "general"),
    ],
)
def test_storage_prefix(destinations, prefix):
    assert storage_prefix(destinations) == prefix


def test_build_storage_key():
    key = build_storage_key(["labels"], "../BFPC Label v2.pdf", upload_date=date(2026, 1, 5))
    assert re.fullmatch(r"labels/2026-01-05/[0-9a-f]{12}_BFPC_Label_v2\.pdf", key)
    assert build_storage_key(["labels"], "x.pdf") != build_storage_key(["labels"], "x.pdf")


def test_upload_download_delete(client, tmp_path):
    data = b"%PDF-1.4 label artwork"
    with session_scope(client.application) as s:
        product_id = s.query(Product).one().id

    r = _upload(client, data, product_id=str(product_id))
    assert r.status_code == 201
    f = r.json["file"]
    assert f["filename"] == "BFPC Label v2.pdf"
    assert f["sha256"] == hashlib.sha256(data).hexdigest()
    assert f["sizeBytes"] == len(data)
    assert f["documentType"] == "Label"
    assert f["destinations"] == ["labels", "products"]
    assert f["productId"] == product_id

    with session_scope(client.application) as s:
        key = s.get(StoredFile, f["id"]).storage_key
    assert key.startswith("labels/")
    assert (tmp_path / "storage" / key).read_bytes() == data

    listed = client.get(f"/api/files?product_id={product_id}").json["files"]
    assert [x["id"] for x in listed] == [f["id"]]
    assert client.get("/api/files?document_type=COA").json["files"] == []

    r = client.get(f"/api/files/{f['id']}/download")
    assert r.status_code == 200
    assert r.data == data
    assert "attachment" in r.headers["Content-Disposition"]
    r.close()

    r = client.delete(f"/api/files/{f['id']}")
    assert r.json == {"deleted": f["id"]}
    assert not (tmp_path / "storage" / key).exists()
    assert client.get(f"/api/files/{f['id']}/download").status_code == 404


@pytest.mark.parametrize(
    "form,status",
    [
        ({"document_type": ""}, 400),
        ({"destinations": ""}, 400),
        ({"destinations": "marketing"}, 400),
        ({"product_id": "999"}, 400),
        ({"product_id": "abc"}, 400),
        ({"document_id": "doc_missing"}, 404),
    ],
)
def test_upload_validation(client, form, status):
    r = _upload(client, **form)
    assert r.status_code == status


def test_upload_size_limit(client):
    r = _upload(client, b"x" * (1024 * 1024 + 10))
    assert r.status_code == 400
    assert "1 MB" in r.json["error"]["message"]


def test_deleting_document_unlinks_files(client):
    r = client.post("/api/documents", json={"templateId": "tmpl-coa", "title": "Batch 300 COA"})
    doc_id = r.json["document"]["id"]

    f = _upload(client, b"coa scan", "coa.pdf", document_type="COA", destinations="general", document_id=doc_id).json["file"]
    assert f["documentId"] == doc_id

    assert client.delete(f"/api/documents/{doc_id}").status_code == 200
    with session_scope(client.application) as s:
        assert s.get(StoredFile, f["id"]).document_id is None
