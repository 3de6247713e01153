import json
import logging
import shutil
import threading
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import jwt as pyjwt
from fastapi import Depends, FastAPI, File, Form, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as SchemaValidationError

from auth import CurrentUser, decode_access_token, get_current_user, require_admin
from bulk_generation import BulkCertificateGenerator, run_bulk_generation
from certificate_renderer import PUBLIC_PREFIX, CertificateRenderer
from certificate_service import CertificateService
from config import Settings
from csv_mapper import input_fields, sample_csv
from database import Database
from errors import CertificateAppError, NotFoundError, ValidationError
from logging_config import setup_logging
from progress_channel import ProgressChannel
from repositories import CertificateRepository, TemplateRepository
from schemas import GenerateCertificateRequest, TemplateFieldIn
from verification import verify_certificate

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".pdf", ".png", ".jpg", ".jpeg")

# Exact-match public paths
_PUBLIC_API_PATHS: frozenset[str] = frozenset({"/api/health"})
# Prefix-match public paths: verification is the one unauthenticated read.
_PUBLIC_API_PREFIXES: tuple[str, ...] = ("/api/verify/",)


def write_upload(upload: UploadFile, directory: Path, suffix: str) -> Path:
    """Copy an upload to disk in chunks; the body is never read whole."""
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / f"{uuid.uuid4().hex}{suffix}"
    with target.open("wb") as out:
        shutil.copyfileobj(upload.file, out, length=64 * 1024)
    return target


def _parse_fields_json(fields_json: str) -> list[TemplateFieldIn]:
    try:
        raw = json.loads(fields_json)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid fields_json: {exc}") from exc
    if isinstance(raw, dict):
        raw = raw.get("fields", [])
    if not isinstance(raw, list):
        raise ValidationError("fields_json must be a list of fields.")
    try:
        return [TemplateFieldIn.model_validate(item) for item in raw]
    except SchemaValidationError as exc:
        raise ValidationError(f"Invalid field definition: {exc.errors()[0]['msg']}") from exc


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    database = Database(settings.database_url)
    templates = TemplateRepository(database)
    certificates = CertificateRepository(database)
    renderer = CertificateRenderer(
        output_dir=settings.generated_dir,
        fonts_dir=settings.fonts_dir,
        public_base_url=settings.public_base_url,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.ensure_directories()
        database.create_all()
        logger.info("Certificate server ready (generated files in %s)", settings.generated_dir)
        yield
        database.dispose()

    app = FastAPI(title="Certificate Issuance API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.templates = templates
    app.state.certificates = certificates
    app.state.certificate_service = CertificateService(
        templates, certificates, renderer, settings.generated_dir, settings.restricted_role
    )
    app.state.bulk_generator = BulkCertificateGenerator(
        templates, certificates, renderer, settings.generated_dir, settings.restricted_role
    )

    # ── CORS ──────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── AUTH MIDDLEWARE ───────────────────────────────────────────────────────
    @app.middleware("http")
    async def _auth_middleware(request: Request, call_next):
        """Reject unauthenticated calls to /api/* (except public endpoints)."""
        path = request.url.path
        if (
            not path.startswith("/api/")
            or path in _PUBLIC_API_PATHS
            or any(path.startswith(p) for p in _PUBLIC_API_PREFIXES)
            or request.method == "OPTIONS"
        ):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing or invalid Authorization header."},
            )

        token = auth_header.split(" ", 1)[1]
        try:
            decode_access_token(token, settings.jwt_secret, settings.jwt_algorithm)
        except pyjwt.ExpiredSignatureError:
            return JSONResponse(
                status_code=401,
                content={"detail": "Token has expired."},
                headers={"WWW-Authenticate": "Bearer"},
            )
        except pyjwt.InvalidTokenError as exc:
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid token: {exc}"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "message": "Request validation failed.",
                "detail": exc.errors(),
            },
        )

    @app.exception_handler(CertificateAppError)
    async def certificate_error_handler(request: Request, exc: CertificateAppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ── CERTIFICATES ──────────────────────────────────────────────────────────

    @app.post("/api/certificates/generate", status_code=status.HTTP_201_CREATED)
    def generate_certificate(
        payload: GenerateCertificateRequest,
        request: Request,
        user: CurrentUser = Depends(get_current_user),
    ) -> dict[str, Any]:
        if not payload.template_id:
            raise ValidationError("template_id is required.")
        service: CertificateService = request.app.state.certificate_service
        try:
            return service.generate_single(user, payload.template_id, payload.field_values())
        except CertificateAppError:
            raise
        except Exception as exc:
            logger.exception("Certificate generation error")
            raise CertificateAppError(str(exc) or "Failed to generate certificate.") from exc

    @app.post("/api/certificates/bulk")
    def generate_bulk_certificates(
        request: Request,
        template_id: str | None = Form(None),
        csv: UploadFile | None = File(None),
        user: CurrentUser = Depends(get_current_user),
    ) -> StreamingResponse:
        """
        Stream bulk generation progress as server-sent events. Once the stream
        is open every failure, validation included, arrives as an `error` event.
        """
        channel = ProgressChannel()
        if not template_id or csv is None:
            channel.error("template_id and CSV file are required.")
        else:
            csv_path = write_upload(csv, settings.csv_uploads_dir, ".csv")
            worker = threading.Thread(
                target=run_bulk_generation,
                args=(request.app.state.bulk_generator, user, template_id, csv_path, channel),
                name=f"bulk-{csv_path.stem[:8]}",
                daemon=True,
            )
            worker.start()

        return StreamingResponse(
            channel.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.get("/api/certificates")
    def list_certificates(request: Request, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
        service: CertificateService = request.app.state.certificate_service
        return {"certificates": [c.summary() for c in service.list_for(user)]}

    @app.get("/api/certificates/{certificate_id}")
    def get_certificate(
        certificate_id: str, request: Request, user: CurrentUser = Depends(get_current_user)
    ) -> dict[str, Any]:
        service: CertificateService = request.app.state.certificate_service
        return {"certificate": service.get_details(user, certificate_id).summary()}

    @app.get("/api/certificates/{certificate_id}/download")
    def download_certificate(
        certificate_id: str, request: Request, user: CurrentUser = Depends(get_current_user)
    ) -> FileResponse:
        service: CertificateService = request.app.state.certificate_service
        result = service.get_download(user, certificate_id)
        if result is None:
            raise NotFoundError("Certificate PDF not found.")
        pdf_file, filename = result
        return FileResponse(pdf_file, media_type="application/pdf", filename=filename)

    @app.delete("/api/certificates/{certificate_id}")
    def delete_certificate(
        certificate_id: str, request: Request, user: CurrentUser = Depends(get_current_user)
    ) -> dict[str, Any]:
        service: CertificateService = request.app.state.certificate_service
        deleted = service.delete(user, certificate_id)
        return {"message": "Certificate deleted.", "certificate": deleted.summary()}

    # ── VERIFICATION (public) ─────────────────────────────────────────────────

    @app.get("/api/verify/{verification_code}")
    def verify(verification_code: str, request: Request) -> dict[str, Any]:
        result = verify_certificate(
            request.app.state.certificates, verification_code, settings.issuer_name
        )
        return result.model_dump(mode="json", exclude_none=True)

    # ── TEMPLATES ─────────────────────────────────────────────────────────────

    @app.get("/api/templates")
    def list_templates(request: Request, user: CurrentUser = Depends(get_current_user)) -> dict[str, Any]:
        return {"templates": [t.summary() for t in request.app.state.templates.list_active()]}

    @app.get("/api/templates/{template_id}")
    def get_template(
        template_id: str, request: Request, user: CurrentUser = Depends(get_current_user)
    ) -> dict[str, Any]:
        template = request.app.state.templates.get_visible(template_id, user.id)
        if template is None:
            raise NotFoundError("Template not found.")
        return {
            "template": template.summary(),
            "fields": [f.to_dict() for f in template.fields],
            "input_fields": [f.to_dict() for f in input_fields(template.fields)],
        }

    @app.get("/api/templates/{template_id}/sample-csv")
    def get_sample_csv(
        template_id: str, request: Request, user: CurrentUser = Depends(get_current_user)
    ) -> Response:
        template = request.app.state.templates.get_visible(template_id, user.id)
        if template is None:
            raise NotFoundError("Template not found.")
        safe_name = "".join(c for c in template.name if c.isalnum() or c in "-_") or "template"
        return Response(
            content=sample_csv(template.fields),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="sample_{safe_name}.csv"'},
        )

    @app.post("/api/templates", status_code=status.HTTP_201_CREATED)
    def create_template(
        request: Request,
        name: str = Form(...),
        fields_json: str = Form(...),
        canvas_width: int = Form(0),
        canvas_height: int = Form(0),
        template_file: UploadFile = File(...),
        admin: CurrentUser = Depends(require_admin),
    ) -> dict[str, Any]:
        suffix = Path(template_file.filename or "").suffix.lower()
        if suffix not in TEMPLATE_SUFFIXES:
            raise ValidationError(
                f"Invalid template file type. Allowed: {', '.join(TEMPLATE_SUFFIXES)}. Got: {suffix or 'none'}"
            )
        if canvas_width < 0 or canvas_height < 0:
            raise ValidationError("Canvas dimensions cannot be negative.")
        field_specs = [f.to_spec() for f in _parse_fields_json(fields_json)]

        image_path = write_upload(template_file, settings.template_uploads_dir, suffix)
        template = request.app.state.templates.create(
            name=name,
            template_image_path=str(image_path),
            fields=field_specs,
            canvas_width=canvas_width,
            canvas_height=canvas_height,
            created_by=admin.id,
        )
        logger.info("Template %s (%s) created by %s", template.id, template.name, admin.id)
        return {"template": template.summary(), "fields": [f.to_dict() for f in template.fields]}

    @app.delete("/api/templates/{template_id}")
    def delete_template(
        template_id: str, request: Request, admin: CurrentUser = Depends(require_admin)
    ) -> dict[str, str]:
        deleted = request.app.state.templates.delete(template_id)
        if deleted is None:
            raise NotFoundError("Template not found.")
        Path(deleted.template_image_path).unlink(missing_ok=True)
        return {"message": f"Template '{deleted.name}' deleted."}

    # ── GENERATED FILES ───────────────────────────────────────────────────────
    app.mount(
        PUBLIC_PREFIX,
        StaticFiles(directory=settings.generated_dir, check_dir=False),
        name="generated",
    )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app_server:app", host="0.0.0.0", port=5050)
