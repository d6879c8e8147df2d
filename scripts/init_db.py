import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.qms.models import Permission, Role, User  # noqa: E402
from app.qms.modules.templates.service import seed_templates  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402

PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("admin.view", "Admin: view audit trail"),
    # Document workflow
    ("docs.view", "Docs: view"),
    ("docs.create", "Docs: create from template"),
    ("docs.edit", "Docs: edit content"),
    ("docs.assign", "Docs: assign reviewers"),
    ("docs.approve", "Docs: approve / reject"),
    ("docs.delete", "Docs: delete"),
    # Files
    ("files.upload", "Files: upload"),
    ("files.download", "Files: download"),
    ("files.delete", "Files: delete"),
    # Templates
    ("templates.view", "Templates: view"),
    ("templates.manage", "Templates: create / edit"),
    # Suppliers
    ("suppliers.view", "Suppliers: view"),
    ("suppliers.create", "Suppliers: create"),
    ("suppliers.edit", "Suppliers: edit"),
    # Products
    ("products.view", "Products: view"),
    ("products.create", "Products: create"),
    ("products.import", "Products: import CSV"),
    # Allergens
    ("allergens.view", "Allergens: view matrix"),
    ("allergens.import", "Allergens: import sheet"),
    # Tasks
    ("tasks.view", "Tasks: view"),
    ("tasks.create", "Tasks: assign"),
    ("tasks.edit", "Tasks: update / comment"),
    ("tasks.delete", "Tasks: delete"),
)

# Reviewers read everything and sign off; they do not manage catalog data.
REVIEWER_PERMISSIONS = (
    "docs.view",
    "docs.edit",
    "docs.approve",
    "files.download",
    "templates.view",
    "suppliers.view",
    "products.view",
    "allergens.view",
    "tasks.view",
    "tasks.edit",
)


def seed_only(*, database_url: str | None = None) -> dict:
    """
    Seed permissions/roles/admin user/built-in templates in an idempotent way.
    Does NOT overwrite an existing admin user's password.

    Returns what this run added, so release logs show whether anything changed.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_name = (os.environ.get("ADMIN_NAME") or "QMS Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///qms.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        summary = {"permissions_added": [], "roles_added": [], "admin_created": False, "templates_added": 0}
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
                summary["permissions_added"].append(key)
            perms[key] = p

        def ensure_role(key: str, name: str, keys) -> Role:
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
                summary["roles_added"].append(key)
            for k in keys:
                if perms[k] not in role.permissions:
                    role.permissions.append(perms[k])
            return role

        role_admin = ensure_role("admin", "Administrator", [k for k, _ in PERMISSIONS])
        ensure_role("reviewer", "Reviewer", REVIEWER_PERMISSIONS)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name=admin_name,
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
            summary["admin_created"] = True
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        summary["templates_added"] = seed_templates(s)

    summary["admin_email"] = admin_email
    return summary


def main() -> None:
    summary = seed_only(database_url=None)
    print("Initialized database (seed_only).")
    print(f"Admin email: {summary['admin_email']}" + (" (created)" if summary["admin_created"] else ""))
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Built-in templates added: {summary['templates_added']}")


if __name__ == "__main__":
    main()
