import io

import pytest
from openpyxl import Workbook
from openpyxl.styles import PatternFill
from werkzeug.security import generate_password_hash

from app.qms import create_app
from app.qms.db import session_scope
from app.qms.models import Base, Permission, Role, User
from app.qms.modules.allergens.models import CONTAINS, FREE, UNSPECIFIED, AllergenEntry
from app.qms.modules.allergens.parsers import (
    ALLERGEN_COLUMNS,
    ALLERGENS,
    parse_allergen_csv,
    parse_allergen_file,
    parse_allergen_xlsx,
    status_from_rgb,
    status_from_value,
)

HEADERS = ["Brand", "SKU", "Product Name", *[h for h, _ in ALLERGEN_COLUMNS], "NOTES"]
GREEN = PatternFill(fill_type="solid", fgColor="FF00B050")
RED = PatternFill(fill_type="solid", fgColor="FFFF0000")


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
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        perms = [Permission(key=k, name=k) for k in ("allergens.view", "allergens.import")]
        r = Role(key="admin", name="Administrator")
        r.permissions.extend(perms)
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(r)
        s.add_all([*perms, r, u])

    c = app.test_client()
    r = c.post("/auth/login", json={"email": "admin@example.com", "password": "pw"})
    assert r.status_code == 200
    return c


def _csv_bytes(*rows):
    lines = [",".join(HEADERS)]
    for row in rows:
        lines.append(",".join(row))
    return ("\n".join(lines) + "\n").encode("utf-8")


def _row(brand, sku, name, marks, notes=""):
    """marks: dict allergen -> cell text; unspecified allergens are blank."""
    return [brand, sku, name, *[marks.get(a, "") for a in ALLERGENS], notes]


def _xlsx_bytes():
    wb = Workbook()
    ws = wb.active
    ws.append(HEADERS)
    ws.append(_row("BodyBio", "BFPC", "PC Liquid", {"Soy": "N", "Gluten": "Y"}, "Soy lecithin"))
    ws.append(_row("BodyBio", "BFBUTYRATE", "Butyrate", {}))
    soy_col = HEADERS.index("Free From Soy") + 1
    milk_col = HEADERS.index("Free From Milk (Casein)") + 1
    # Colour-only cells on the second product.
    ws.cell(row=3, column=soy_col).fill = GREEN
    ws.cell(row=3, column=milk_col).fill = RED
    # An explicit value wins over the fill.
    ws.cell(row=2, column=soy_col).fill = GREEN
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.mark.parametrize(
    "value,expected",
    [("Y", FREE), (" yes ", FREE), ("N", CONTAINS), ("contains", CONTAINS), ("", None), (None, None), ("?", None)],
)
def test_status_from_value(value, expected):
    assert status_from_value(value) == expected


@pytest.mark.parametrize(
    "rgb,expected",
    [("FF00B050", FREE), ("00FF00", FREE), ("FFFF0000", CONTAINS), ("FFFFFFFF", None), ("FF000000", None), ("", None), ("theme", None)],
)
def test_status_from_rgb(rgb, expected):
    assert status_from_rgb(rgb) == expected


def test_parse_csv():
    data = _csv_bytes(
        _row("BodyBio", "bfpc", "PC Liquid", {"Soy": "N", "Gluten": "Y"}, "Soy lecithin"),
        _row("", "", "", {}),
        _row("BodyBio", "", "No SKU", {}),
        _row("BodyBio", "BFPC", "Dup", {}),
    )

    rows, errors = parse_allergen_csv(data)

    assert [r.sku for r in rows] == ["BFPC"]
    assert rows[0].statuses["Soy"] == CONTAINS
    assert rows[0].statuses["Gluten"] == FREE
    assert rows[0].statuses["Fish"] == UNSPECIFIED
    assert list(rows[0].statuses) == list(ALLERGENS)
    assert rows[0].notes == "Soy lecithin"
    assert [(e.row_number, e.message) for e in errors] == [(4, "SKU is required."), (5, "Duplicate SKU BFPC in sheet.")]


def test_parse_csv_missing_columns():
    with pytest.raises(ValueError, match="SKU"):
        parse_allergen_csv(b"Brand,Product Name\nBodyBio,PC\n")


def test_parse_xlsx_uses_fill_colour_for_blank_cells():
    rows, errors = parse_allergen_xlsx(_xlsx_bytes())

    assert errors == []
    by_sku = {r.sku: r for r in rows}
    assert by_sku["BFPC"].statuses["Soy"] == CONTAINS
    assert by_sku["BFPC"].statuses["Gluten"] == FREE
    assert by_sku["BFBUTYRATE"].statuses["Soy"] == FREE
    assert by_sku["BFBUTYRATE"].statuses["Milk"] == CONTAINS
    assert by_sku["BFBUTYRATE"].statuses["Corn"] == UNSPECIFIED


def test_parse_file_dispatch():
    with pytest.raises(ValueError, match="Unsupported"):
        parse_allergen_file("sheet.pdf", b"%PDF")
    with pytest.raises(ValueError, match="XLSX"):
        parse_allergen_file("sheet.xlsx", b"not a zip")
    rows, _errors = parse_allergen_file("Sheet.CSV", _csv_bytes(_row("B", "S1", "P", {})))
    assert [r.sku for r in rows] == ["S1"]


def _upload(client, data, filename):
    return client.post(
        "/api/allergens/import",
        data={"file": (io.BytesIO(data), filename)},
        content_type="multipart/form-data",
    )


def test_import_and_matrix(client):
    r = _upload(client, _xlsx_bytes(), "Allergens.xlsx")
    assert r.status_code == 200
    assert r.json == {"products": 2, "entries": 2 * len(ALLERGENS), "errors": []}

    r = client.get("/api/allergens")
    assert r.json["allergens"] == list(ALLERGENS)
    assert r.json["statuses"] == [FREE, CONTAINS, UNSPECIFIED]
    rows = {row["sku"]: row for row in r.json["rows"]}
    assert list(rows) == ["BFBUTYRATE", "BFPC"]
    assert rows["BFPC"]["notes"] == "Soy lecithin"
    assert list(rows["BFPC"]["allergens"]) == list(ALLERGENS)
    assert rows["BFPC"]["allergens"]["Soy"] == CONTAINS

    r = client.get("/api/allergens?free_from=Soy")
    assert [row["sku"] for row in r.json["rows"]] == ["BFBUTYRATE"]
    r = client.get("/api/allergens?sku=bfpc")
    assert [row["sku"] for row in r.json["rows"]] == ["BFPC"]
    r = client.get("/api/allergens?q=butyr")
    assert [row["sku"] for row in r.json["rows"]] == ["BFBUTYRATE"]


def test_reimport_replaces_entries_per_sku(client):
    _upload(client, _xlsx_bytes(), "Allergens.xlsx")

    r = _upload(client, _csv_bytes(_row("BodyBio", "BFPC", "PC Liquid", {"Soy": "Y"})), "update.csv")
    assert r.json["products"] == 1

    with session_scope(client.application) as s:
        assert s.query(AllergenEntry).count() == 2 * len(ALLERGENS)
        soy = s.query(AllergenEntry).filter(AllergenEntry.product_sku == "BFPC", AllergenEntry.allergen == "Soy").one()
        assert soy.status == FREE
        assert soy.notes is None
        # SKUs absent from the new sheet are untouched.
        milk = (
            s.query(AllergenEntry)
            .filter(AllergenEntry.product_sku == "BFBUTYRATE", AllergenEntry.allergen == "Milk")
            .one()
        )
        assert milk.status == CONTAINS


def test_import_rejects_unreadable_sheet(client):
    r = _upload(client, b"junk", "Allergens.xlsx")
    assert r.status_code == 400
    assert r.json["error"]["kind"] == "validation"
