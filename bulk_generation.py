"""
Bulk certificate generation.

``BulkCertificateGenerator.generate`` turns a template and an uploaded CSV into
persisted certificates, one rendered PDF each, and a ZIP of all of them.
Rows are processed strictly one after another so every ``(current, total)``
reported to ``on_progress`` counts certificates that are persisted *and*
rendered.

``run_bulk_generation`` is the transport-facing wrapper: it feeds a
``ProgressChannel`` and guarantees exactly one terminal event.
"""

import logging
import time
import uuid
import zipfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from auth import CurrentUser
from certificate_renderer import PUBLIC_PREFIX, CertificateRenderer, resolve_generated_path
from csv_mapper import StudentRow, input_fields, iter_csv_rows, map_rows
from errors import CertificateAppError, NotFoundError, PermissionDeniedError, ValidationError
from progress_channel import ProgressChannel
from repositories import CertificateRepository, TemplateLayout, TemplateRepository

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int, int], None]

RESTRICTED_ROLE_MESSAGE = (
    "Admins are restricted from generating certificates. Only Users can generate certificates."
)
EMPTY_CSV_MESSAGE = "CSV file is empty or has invalid format."


def new_verification_code() -> str:
    """First segment of a fresh uuid4, upper-cased (8 hex chars).

    Not checked against existing codes; uniqueness is statistical.
    """
    return str(uuid.uuid4()).split("-")[0].upper()


def check_can_generate(user: CurrentUser, restricted_role: str) -> None:
    if user.role == restricted_role:
        raise PermissionDeniedError(RESTRICTED_ROLE_MESSAGE)


def load_template(templates: TemplateRepository, template_id: str, user: CurrentUser) -> TemplateLayout:
    template = templates.get_visible(template_id, user.id)
    if template is None:
        raise NotFoundError("Template not found.")
    return template


@dataclass
class BulkResult:
    count: int
    certificates: list[dict[str, Any]] = field(default_factory=list)
    zip_path: str = ""

    @property
    def message(self) -> str:
        return f"{self.count} certificates generated."


def _claim_zip_path(output_dir: Path) -> tuple[Path, Any]:
    """Open ``certificates_bulk_<millis>.zip`` for exclusive writing.

    Concurrent requests in the same millisecond move on to the next one, so no
    lock is needed to keep names unique.
    """
    stamp = time.time_ns() // 1_000_000
    while True:
        path = output_dir / f"certificates_bulk_{stamp}.zip"
        try:
            return path, path.open("xb")
        except FileExistsError:
            stamp += 1


def build_zip_archive(pdf_paths: Iterable[Path], output_dir: Path) -> Path:
    """Zip the PDFs that still exist; a missing file is skipped, not fatal."""
    output_dir.mkdir(parents=True, exist_ok=True)
    zip_path, handle = _claim_zip_path(output_dir)
    with handle, zipfile.ZipFile(handle, "w", zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for pdf_path in pdf_paths:
            if not pdf_path.exists():
                logger.warning("Skipping missing PDF while zipping: %s", pdf_path.name)
                continue
            archive.write(pdf_path, pdf_path.name)
    return zip_path


class BulkCertificateGenerator:
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

    def generate(
        self,
        user: CurrentUser,
        template_id: str,
        csv_path: Path,
        on_progress: ProgressSink | None = None,
    ) -> BulkResult:
        check_can_generate(user, self.restricted_role)
        template = load_template(self.templates, template_id, user)

        students: list[StudentRow] = list(
            map_rows(iter_csv_rows(csv_path), input_fields(template.fields))
        )
        if not students:
            raise ValidationError(EMPTY_CSV_MESSAGE)

        total = len(students)
        logger.info("Bulk generation started: template=%s user=%s rows=%d", template.id, user.id, total)
        if on_progress:
            on_progress(0, total)

        generated: list[dict[str, Any]] = []
        pdf_files: list[Path] = []
        for index, student in enumerate(students):
            certificate = self.certificates.create(
                template_id=template.id,
                user_id=user.id,
                student_name=student.student_name,
                course_name=student.course_name,
                completion_date=student.completion_date,
                verification_code=new_verification_code(),
                custom_data=student.custom_data,
            )
            pdf_path = self.renderer.render(certificate, template)
            certificate.pdf_path = pdf_path
            self.certificates.update_pdf_path(certificate.id, pdf_path)

            generated.append(certificate.summary())
            pdf_files.append(resolve_generated_path(self.output_dir, pdf_path))
            if on_progress:
                on_progress(index + 1, total)

        zip_file = build_zip_archive(pdf_files, self.output_dir)
        logger.info("Bulk generation finished: %d certificates, archive %s", len(generated), zip_file.name)
        return BulkResult(
            count=len(generated),
            certificates=generated,
            zip_path=f"{PUBLIC_PREFIX}/{zip_file.name}",
        )


def run_bulk_generation(
    generator: BulkCertificateGenerator,
    user: CurrentUser,
    template_id: str,
    csv_path: Path,
    channel: ProgressChannel,
) -> BulkResult | None:
    """Drive one bulk request into *channel*; the uploaded CSV is always removed."""
    try:
        result = generator.generate(user, template_id, csv_path, on_progress=channel.progress)
    except CertificateAppError as exc:
        logger.warning("Bulk generation rejected for template %s: %s", template_id, exc.message)
        channel.error(exc.message)
        return None
    except Exception as exc:
        logger.exception("Bulk generation failed for template %s", template_id)
        channel.error(str(exc) or "Failed to generate bulk certificates.")
        return None
    finally:
        csv_path.unlink(missing_ok=True)

    channel.done(result.message, result.certificates, result.zip_path)
    return result
