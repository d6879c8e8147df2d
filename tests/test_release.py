import pytest
from sqlalchemy import create_engine

from app.qms.models import Base
from scripts import init_db
from scripts.release import format_seed_summary, run_release


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    monkeypatch.setenv("ADMIN_EMAIL", "QA.Lead@example.com ")
    monkeypatch.setenv("ADMIN_PASSWORD", "pw")
    monkeypatch.delenv("ADMIN_NAME", raising=False)
    return url


def test_seed_reports_what_it_added(db_url):
    first = init_db.seed_only(database_url=db_url)

    assert first["admin_email"] == "qa.lead@example.com"
    assert first["admin_created"] is True
    assert first["roles_added"] == ["admin", "reviewer"]
    assert first["permissions_added"] == [k for k, _ in init_db.PERMISSIONS]
    assert first["templates_added"] > 0

    again = init_db.seed_only(database_url=db_url)
    assert again["admin_created"] is False
    assert again["roles_added"] == [] and again["permissions_added"] == []
    assert again["templates_added"] == 0


def test_format_seed_summary():
    lines = format_seed_summary(
        {
            "permissions_added": ["tasks.view"],
            "roles_added": [],
            "admin_created": False,
            "admin_email": "admin@example.com",
            "templates_added": 0,
        }
    )
    assert lines == [
        "Permissions added: 1 (tasks.view)",
        "Roles added: none",
        "Admin user: admin@example.com (already present)",
        "Built-in templates added: 0",
    ]


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///qms.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        run_release()


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        run_release()
