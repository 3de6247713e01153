"""End-to-end tests through the FastAPI app."""
import json

from conftest import auth_headers, make_token
from progress_channel import iter_sse_events

STUDENTS_CSV = "Student Name,Course Name,Completion Date\nAda,Maths,2026-01-10\nAlan,Logic,2026-01-11\n"


def post_bulk(client, template_id, content=STUDENTS_CSV, headers=None):
    return client.post(
        "/api/certificates/bulk",
        data={"template_id": template_id},
        files={"csv": ("students.csv", content.encode("utf-8"), "text/csv")},
        headers=headers or auth_headers(),
    )


def test_health_is_public(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_protected_routes_need_a_token(client):
    assert client.get("/api/certificates").status_code == 401
    bad = client.get("/api/certificates", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_token_signed_with_another_secret_is_rejected(client):
    headers = {"Authorization": f"Bearer {make_token(secret='some-other-secret')}"}
    assert client.get("/api/templates", headers=headers).status_code == 401


class TestBulkStream:
    def test_progress_then_done(self, client, sample_template):
        response = post_bulk(client, sample_template.id)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = list(iter_sse_events(response.iter_bytes()))
        assert [e["type"] for e in events] == ["progress", "progress", "progress", "done"]
        assert [e["current"] for e in events[:3]] == [0, 1, 2]
        done = events[-1]
        assert done["message"] == "2 certificates generated."
        assert [c["student_name"] for c in done["certificates"]] == ["Ada", "Alan"]

        archive = client.get(done["zip_download_url"])
        assert archive.status_code == 200
        assert archive.content.startswith(b"PK")

    def test_missing_csv_is_reported_as_error_event(self, client, sample_template):
        response = client.post(
            "/api/certificates/bulk", data={"template_id": sample_template.id}, headers=auth_headers()
        )
        events = list(iter_sse_events([response.content]))
        assert events == [{"type": "error", "error": "template_id and CSV file are required."}]

    def test_unknown_template_is_reported_as_error_event(self, client):
        events = list(iter_sse_events([post_bulk(client, "no-such-template").content]))
        assert events == [{"type": "error", "error": "Template not found."}]

    def test_restricted_role_gets_error_event(self, client, sample_template):
        response = post_bulk(client, sample_template.id, headers=auth_headers("admin-1", "admin"))
        events = list(iter_sse_events([response.content]))
        assert len(events) == 1
        assert events[0]["type"] == "error"

    def test_certificates_are_listed_after_the_run(self, client, sample_template):
        post_bulk(client, sample_template.id)
        listed = client.get("/api/certificates", headers=auth_headers()).json()["certificates"]
        assert sorted(c["student_name"] for c in listed) == ["Ada", "Alan"]
        assert client.get("/api/certificates", headers=auth_headers("user-2")).json() == {"certificates": []}


class TestVerification:
    def test_verify_issued_certificate_without_token(self, client, sample_template):
        events = list(iter_sse_events([post_bulk(client, sample_template.id).content]))
        code = events[-1]["certificates"][0]["verification_code"]

        response = client.get(f"/api/verify/{code.lower()}")
        assert response.status_code == 200
        body = response.json()
        assert body["verified"] is True
        assert body["certificate"]["student_name"] == "Ada"
        assert body["certificate"]["issued_by"] == "Test Academy"
        assert "user_id" not in body["certificate"]

    def test_unknown_code_still_answers_200(self, client):
        response = client.get("/api/verify/DEADBEEF")
        assert response.status_code == 200
        assert response.json()["verified"] is False


class TestSingleCertificate:
    def test_generate_download_and_delete(self, client, sample_template):
        created = client.post(
            "/api/certificates/generate",
            json={"template_id": sample_template.id, "student_name": "Ada", "course_name": "Maths"},
            headers=auth_headers(),
        )
        assert created.status_code == 201
        certificate = created.json()["certificate"]

        details = client.get(f"/api/certificates/{certificate['id']}", headers=auth_headers())
        assert details.json()["certificate"]["verification_code"] == certificate["verification_code"]

        download = client.get(f"/api/certificates/{certificate['id']}/download", headers=auth_headers())
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert "certificate_Ada.pdf" in download.headers["content-disposition"]

        deleted = client.delete(f"/api/certificates/{certificate['id']}", headers=auth_headers())
        assert deleted.status_code == 200
        gone = client.get(f"/api/certificates/{certificate['id']}", headers=auth_headers())
        assert gone.status_code == 404
        assert gone.json() == {"error": "Certificate not found."}

    def test_generate_requires_template_id(self, client):
        response = client.post("/api/certificates/generate", json={"student_name": "Ada"}, headers=auth_headers())
        assert response.status_code == 400

    def test_generate_unknown_template(self, client):
        response = client.post(
            "/api/certificates/generate", json={"template_id": "nope", "student_name": "Ada"}, headers=auth_headers()
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Template not found."}

    def test_generate_by_restricted_role(self, client, sample_template):
        response = client.post(
            "/api/certificates/generate",
            json={"template_id": sample_template.id, "student_name": "Ada"},
            headers=auth_headers("admin-1", "admin"),
        )
        assert response.status_code == 403

    def test_other_users_cannot_download(self, client, sample_template):
        certificate = client.post(
            "/api/certificates/generate",
            json={"template_id": sample_template.id, "student_name": "Ada"},
            headers=auth_headers(),
        ).json()["certificate"]
        response = client.get(f"/api/certificates/{certificate['id']}/download", headers=auth_headers("user-2"))
        assert response.status_code == 404


class TestTemplates:
    def test_list_and_detail(self, client, sample_template):
        listed = client.get("/api/templates", headers=auth_headers()).json()["templates"]
        assert [t["id"] for t in listed] == [sample_template.id]

        detail = client.get(f"/api/templates/{sample_template.id}", headers=auth_headers()).json()
        assert len(detail["fields"]) == 6
        assert [f["field_type"] for f in detail["input_fields"]] == ["student_name", "course_name", "completion_date"]

    def test_sample_csv(self, client, sample_template):
        response = client.get(f"/api/templates/{sample_template.id}/sample-csv", headers=auth_headers())
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines()[0] == "Student Name,Course Name,Completion Date"

    def test_admin_creates_and_deletes_template(self, client, template_pdf):
        fields = [{"label": "Student Name", "field_type": "student_name", "position_x": 400, "position_y": 300}]
        created = client.post(
            "/api/templates",
            data={"name": "Uploaded", "fields_json": json.dumps(fields)},
            files={"template_file": ("background.pdf", template_pdf.read_bytes(), "application/pdf")},
            headers=auth_headers("admin-1", "admin"),
        )
        assert created.status_code == 201
        template_id = created.json()["template"]["id"]
        assert created.json()["fields"][0]["label"] == "Student Name"

        deleted = client.delete(f"/api/templates/{template_id}", headers=auth_headers("admin-1", "admin"))
        assert deleted.status_code == 200
        assert client.get(f"/api/templates/{template_id}", headers=auth_headers()).status_code == 404

    def test_template_upload_rejects_unknown_file_type(self, client):
        response = client.post(
            "/api/templates",
            data={"name": "Bad", "fields_json": "[]"},
            files={"template_file": ("background.gif", b"GIF89a", "image/gif")},
            headers=auth_headers("admin-1", "admin"),
        )
        assert response.status_code == 400

    def test_template_management_needs_admin(self, client, template_pdf):
        response = client.post(
            "/api/templates",
            data={"name": "Nope", "fields_json": "[]"},
            files={"template_file": ("background.pdf", template_pdf.read_bytes(), "application/pdf")},
            headers=auth_headers(),
        )
        assert response.status_code == 403
