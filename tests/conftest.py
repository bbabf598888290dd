from __future__ import annotations

import os
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="sipodi-tests-"))
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'sipodi.db'}"
os.environ["DATA_DIR"] = str(_TEST_ROOT)
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STORAGE_BACKEND"] = "local"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sipodi.api.app import create_app  # noqa: E402
from sipodi.core.access import Actor  # noqa: E402
from sipodi.core.auth import hash_password  # noqa: E402
from sipodi.db.base import Base  # noqa: E402
from sipodi.db.repositories import Repository  # noqa: E402
from sipodi.db.seed import seed_super_admin  # noqa: E402
from sipodi.db.session import SessionLocal, engine  # noqa: E402
from sipodi.types import UserRole  # noqa: E402

PASSWORD = "rahasia123"
_PASSWORD_HASH = hash_password(PASSWORD)

@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        seed_super_admin(session)
    yield


@pytest.fixture
def accounts() -> dict[str, Actor]:
    """Two schools, each with a school admin and a GTK, plus the seeded super admin."""
    with SessionLocal() as session:
        repo = Repository(session)
        school_a = repo.create_school(name="SMA Negeri 1", npsn="10000001")
        school_b = repo.create_school(name="SMP Swasta 2", npsn="10000002", status="swasta")

        def add(email: str, role: UserRole, school_id: str | None, full_name: str) -> Actor:
            user = repo.create_user(
                email=email,
                password_hash=_PASSWORD_HASH,
                role=role.value,
                full_name=full_name,
                school_id=school_id,
                gtk_type="guru" if role == UserRole.GTK else None,
            )
            return Actor(id=user.id, role=role, school_id=school_id)

        admin = repo.get_user_by_email("admin@sipodi.local")
        return {
            "super": Actor(id=admin.id, role=UserRole.SUPER_ADMIN),
            "admin_a": add("admin.a@sekolah.id", UserRole.ADMIN_SEKOLAH, school_a.id, "Admin A"),
            "gtk_a": add("guru.a@sekolah.id", UserRole.GTK, school_a.id, "Guru A"),
            "gtk_a2": add("guru.a2@sekolah.id", UserRole.GTK, school_a.id, "Guru A2"),
            "admin_b": add("admin.b@sekolah.id", UserRole.ADMIN_SEKOLAH, school_b.id, "Admin B"),
            "gtk_b": add("guru.b@sekolah.id", UserRole.GTK, school_b.id, "Guru B"),
        }


EMAILS = {
    "super": ("admin@sipodi.local", "admin12345"),
    "admin_a": ("admin.a@sekolah.id", PASSWORD),
    "gtk_a": ("guru.a@sekolah.id", PASSWORD),
    "gtk_a2": ("guru.a2@sekolah.id", PASSWORD),
    "admin_b": ("admin.b@sekolah.id", PASSWORD),
    "gtk_b": ("guru.b@sekolah.id", PASSWORD),
}


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())


@pytest.fixture
def login(client: TestClient):
    def _login(who: str) -> dict[str, str]:
        email, password = EMAILS[who]
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['data']['access_token']}"}

    return _login
