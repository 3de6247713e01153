"""Public certificate verification by code. Only whitelisted fields leave here."""

from datetime import datetime

from pydantic import BaseModel

from certificate_renderer import short_certificate_id
from repositories import CertificateRepository

NOT_FOUND_REASON = "Certificate not found or invalid verification code."


class VerifiedCertificate(BaseModel):
    student_name: str | None = None
    course_name: str | None = None
    completion_date: str | None = None
    certificate_id: str
    issued_by: str
    issue_date: datetime | None = None


class VerificationResult(BaseModel):
    verified: bool
    certificate: VerifiedCertificate | None = None
    error: str | None = None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def verify_certificate(certificates: CertificateRepository, code: str, issuer_name: str) -> VerificationResult:
    normalized = normalize_code(code)
    if not normalized:
        return VerificationResult(verified=False, error="Verification code is required.")

    certificate = certificates.get_by_verification_code(normalized)
    if certificate is None:
        return VerificationResult(verified=False, error=NOT_FOUND_REASON)

    return VerificationResult(
        verified=True,
        certificate=VerifiedCertificate(
            student_name=certificate.student_name,
            course_name=certificate.course_name,
            completion_date=certificate.completion_date,
            certificate_id=short_certificate_id(certificate.id),
            issued_by=issuer_name,
            issue_date=certificate.created_at,
        ),
    )
