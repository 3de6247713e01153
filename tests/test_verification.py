"""Tests for the public verification lookup."""
from verification import NOT_FOUND_REASON, verify_certificate


def test_round_trip_after_bulk_generation(bulk_generator, sample_template, user, write_csv, certificate_repo):
    result = bulk_generator.generate(
        user,
        sample_template.id,
        write_csv("Student Name,Course Name,Completion Date\nKatherine Johnson,Orbital Mechanics,2026-04-02\n"),
    )
    issued = result.certificates[0]

    verification = verify_certificate(certificate_repo, issued["verification_code"], "Test Academy")

    assert verification.verified is True
    view = verification.certificate
    assert (view.student_name, view.course_name, view.completion_date) == (
        "Katherine Johnson",
        "Orbital Mechanics",
        "2026-04-02",
    )
    assert view.certificate_id == issued["id"][:8].upper()
    assert view.issued_by == "Test Academy"
    assert view.issue_date is not None


def test_code_is_normalized(certificate_repo):
    certificate_repo.create(None, "user-1", "Ada", "Maths", None, "ABCDEF12")
    assert verify_certificate(certificate_repo, "  abcdef12 ", "Org").verified is True


def test_unknown_code_is_not_verified(certificate_repo):
    result = verify_certificate(certificate_repo, "00000000", "Org")
    assert result.verified is False
    assert result.error == NOT_FOUND_REASON
    assert result.certificate is None


def test_blank_code_is_not_verified(certificate_repo):
    assert verify_certificate(certificate_repo, "   ", "Org").verified is False


def test_view_never_exposes_private_fields(certificate_repo):
    certificate_repo.create(None, "owner-9", "Ada", "Maths", "2026-01-01", "CAFEBABE", {"secret": "x"})
    dumped = verify_certificate(certificate_repo, "CAFEBABE", "Org").model_dump()

    flat = str(dumped)
    assert "owner-9" not in flat
    assert "secret" not in flat
    assert "pdf_path" not in dumped["certificate"]
    assert set(dumped["certificate"]) == {
        "student_name",
        "course_name",
        "completion_date",
        "certificate_id",
        "issued_by",
        "issue_date",
    }
