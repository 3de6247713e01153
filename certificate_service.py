import logging
from pathlib import Path
from typing import Any

from auth import CurrentUser
from bulk_generation import check_can_generate, load_template, new_verification_code
from certificate_renderer import CertificateRenderer, resolve_generated_path
from csv_mapper import input_fields
from errors import NotFoundError
from models import Certificate
from repositories import CertificateRepository, TemplateRepository

logger = logging.getLogger(__name__)

# Form labels accepted in place of the canonical keys.
_FIXED_FIELD_LABELS = {
    "student_name": "Student Name",
    "course_name": "Course Name",
    "completion_date": "Completion Date",
}


class CertificateService:
    """Single certificate issue plus the owner-facing record operations."""

    def __init__(
        self,
        templates: TemplateRepository,
        certificates: CertificateRepository,
        renderer: CertificateRenderer,
        output_dir: Path,
        restricted_role: str = "admin",
    ):
        self.templates = templates
        self.certificates = certificates
        self.renderer = renderer
        self.output_dir = output_dir
        self.restricted_role = restricted_role

    def generate_single(self, user: CurrentUser, template_id: str, data: dict[str, Any]) -> dict[str, Any]:
        check_can_generate(user, self.restricted_role)
        template = load_template(self.templates, template_id, user)

        values = {k: v for k, v in data.items() if k != "template_id"}
        for spec in input_fields(template.fields):
            if not values.get(spec.field_type) and spec.default_value:
                values[spec.field_type] = spec.default_value

        fixed = {
            key: str(values.get(key) or values.get(label) or "")
            for key, label in _FIXED_FIELD_LABELS.items()
        }
        certificate = self.certificates.create(
            template_id=template.id,
            user_id=user.id,
            student_name=fixed["student_name"],
            course_name=fixed["course_name"],
            completion_date=fixed["completion_date"],
            verification_code=new_verification_code(),
            custom_data=values,
        )
        pdf_path = self.renderer.render(certificate, template)
        self.certificates.update_pdf_path(certificate.id, pdf_path)
        certificate.pdf_path = pdf_path
        logger.info("Issued certificate %s for user %s", certificate.id, user.id)
        return {"certificate": certificate.summary(), "download_url": pdf_path}

    def list_for(self, user: CurrentUser) -> list[Certificate]:
        if user.is_admin:
            return self.certificates.list_all()
        return self.certificates.list_by_user(user.id)

    def get_details(self, user: CurrentUser, certificate_id: str) -> Certificate:
        certificate = self.certificates.get_by_id(certificate_id)
        if certificate is None or (certificate.user_id != user.id and not user.is_admin):
            raise NotFoundError("Certificate not found.")
        return certificate

    def get_download(self, user: CurrentUser, certificate_id: str) -> tuple[Path, str] | None:
        """Return (file path, attachment name), or None when there is no PDF on disk."""
        certificate = self.certificates.get_by_id(certificate_id)
        if certificate is None or (certificate.user_id != user.id and not user.is_admin):
            return None
        if not certificate.pdf_path:
            return None
        pdf_file = resolve_generated_path(self.output_dir, certificate.pdf_path)
        if not pdf_file.exists():
            return None
        return pdf_file, f"certificate_{certificate.student_name}.pdf"

    def delete(self, user: CurrentUser, certificate_id: str) -> Certificate:
        deleted = self.certificates.delete(certificate_id, user.id)
        if deleted is None:
            raise NotFoundError("Certificate not found or you do not have permission to delete it.")
        if deleted.pdf_path:
            resolve_generated_path(self.output_dir, deleted.pdf_path).unlink(missing_ok=True)
        logger.info("Deleted certificate %s", certificate_id)
        return deleted
