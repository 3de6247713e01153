"""
Test configuration and fixtures.

Every test gets its own sqlite database and output directories under tmp_path;
the app is built through create_app(settings) so nothing touches the repo root.
"""
import os
from collections.abc import Callable, Iterator
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient
from reportlab.pdfgen import canvas

os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app_server import create_app
from auth import CurrentUser
from bulk_generation import BulkCertificateGenerator
from certificate_renderer import CertificateRenderer
from certificate_service import CertificateService
from config import Settings
from database import Database
from repositories import CertificateRepository, FieldSpec, TemplateLayout, TemplateRepository

JWT_SECRET = "test-jwt-secret"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        jwt_secret=JWT_SECRET,
        generated_dir=tmp_path / "generated",
        uploads_dir=tmp_path / "uploads",
        fonts_dir=tmp_path / "fonts",
        issuer_name="Test Academy",
        public_base_url="https://certs.example.org",
        log_level="WARNING",
    )


@pytest.fixture
def database(settings: Settings) -> Iterator[Database]:
    settings.ensure_directories()
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def template_repo(database: Database) -> TemplateRepository:
    return TemplateRepository(database)


@pytest.fixture
def certificate_repo(database: Database) -> CertificateRepository:
    return CertificateRepository(database)


@pytest.fixture
def renderer(settings: Settings) -> CertificateRenderer:
    return CertificateRenderer(settings.generated_dir, settings.fonts_dir, settings.public_base_url)


@pytest.fixture
def template_pdf(tmp_path: Path) -> Path:
    """A one-page landscape A4 background drawn with reportlab."""
    path = tmp_path / "background.pdf"
    c = canvas.Canvas(str(path), pagesize=(842, 595))
    c.rect(20, 20, 802, 555)
    c.drawCentredString(421, 520, "CERTIFICATE OF COMPLETION")
    c.showPage()
    c.save()
    return path


def certificate_fields() -> list[FieldSpec]:
    return [
        FieldSpec(label="Student Name", field_type="student_name", position_x=421, position_y=250, font_size=36),
        FieldSpec(label="Course Name", field_type="course_name", position_x=421, position_y=320),
        FieldSpec(label="Completion Date", field_type="completion_date", position_x=421, position_y=380, font_size=16),
        FieldSpec(label="Certificate ID", field_type="certificate_id", position_x=80, position_y=560, text_align="left"),
        FieldSpec(label="Verify", field_type="verification_link", position_x=760, position_y=560, text_align="right"),
        FieldSpec(label="Issuer", field_type="issuer", is_static=True, default_value="Test Academy", position_x=421, position_y=470),
    ]


@pytest.fixture
def sample_template(template_repo: TemplateRepository, template_pdf: Path) -> TemplateLayout:
    return template_repo.create(
        name="Completion",
        template_image_path=str(template_pdf),
        fields=certificate_fields(),
        created_by="admin-1",
    )


@pytest.fixture
def user() -> CurrentUser:
    return CurrentUser(id="user-1", role="user", email="user@example.org")


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(id="admin-1", role="admin", email="admin@example.org")


@pytest.fixture
def bulk_generator(template_repo, certificate_repo, renderer, settings) -> BulkCertificateGenerator:
    return BulkCertificateGenerator(template_repo, certificate_repo, renderer, settings.generated_dir)


@pytest.fixture
def certificate_service(template_repo, certificate_repo, renderer, settings) -> CertificateService:
    return CertificateService(template_repo, certificate_repo, renderer, settings.generated_dir)


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[[str], Path]:
    counter = {"n": 0}

    def _write(content: str) -> Path:
        counter["n"] += 1
        path = tmp_path / f"upload_{counter['n']}.csv"
        path.write_text(content, encoding="utf-8")
        return path

    return _write


def make_token(user_id: str = "user-1", role: str = "user", secret: str = JWT_SECRET, **claims) -> str:
    return jwt.encode({"id": user_id, "role": role, "email": f"{user_id}@example.org", **claims}, secret, algorithm="HS256")


def auth_headers(user_id: str = "user-1", role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client
