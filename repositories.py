"""
Template store and certificate repository.

Both wrap an explicitly constructed ``Database``; there is no module-level
connection. Templates are handed out as detached ``TemplateLayout`` snapshots
so the renderer and the bulk worker thread never touch a live session.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select

from database import Database
from models import SYSTEM_FIELD_TYPES, Certificate, Template, TemplateField


@dataclass(frozen=True)
class FieldSpec:
    label: str
    field_type: str
    is_static: bool = False
    default_value: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0
    font_size: float = 24.0
    font_family: str = "Helvetica"
    font_color: str = "#000000"
    text_align: str = "center"
    id: int | None = None

    @property
    def is_user_input(self) -> bool:
        return not self.is_static and self.field_type not in SYSTEM_FIELD_TYPES

    @classmethod
    def from_model(cls, row: TemplateField) -> "FieldSpec":
        return cls(
            id=row.id,
            label=row.label,
            field_type=row.field_type,
            is_static=bool(row.is_static),
            default_value=row.default_value,
            position_x=row.position_x or 0.0,
            position_y=row.position_y or 0.0,
            font_size=row.font_size or 24.0,
            font_family=row.font_family or "Helvetica",
            font_color=row.font_color or "#000000",
            text_align=row.text_align or "center",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "field_type": self.field_type,
            "is_static": self.is_static,
            "default_value": self.default_value,
            "position_x": self.position_x,
            "position_y": self.position_y,
            "font_size": self.font_size,
            "font_family": self.font_family,
            "font_color": self.font_color,
            "text_align": self.text_align,
        }


@dataclass(frozen=True)
class TemplateLayout:
    id: str
    name: str
    template_image_path: str
    # 0 means "use the background's intrinsic size".
    canvas_width: int = 0
    canvas_height: int = 0
    is_active: bool = True
    created_by: str | None = None
    fields: tuple[FieldSpec, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, row: Template) -> "TemplateLayout":
        return cls(
            id=row.id,
            name=row.name,
            template_image_path=row.template_image_path,
            canvas_width=row.canvas_width or 0,
            canvas_height=row.canvas_height or 0,
            is_active=bool(row.is_active),
            created_by=row.created_by,
            fields=tuple(FieldSpec.from_model(f) for f in row.fields),
        )

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "canvas_width": self.canvas_width,
            "canvas_height": self.canvas_height,
            "is_active": self.is_active,
        }


class TemplateRepository:
    def __init__(self, db: Database):
        self.db = db

    def get_visible(self, template_id: str, user_id: str) -> TemplateLayout | None:
        """Active templates are visible to everyone; inactive ones only to their creator."""
        with self.db.session() as session:
            row = session.get(Template, template_id)
            if row is None:
                return None
            if not row.is_active and row.created_by != user_id:
                return None
            return TemplateLayout.from_model(row)

    def list_active(self) -> list[TemplateLayout]:
        with self.db.session() as session:
            rows = session.scalars(
                select(Template).where(Template.is_active.is_(True)).order_by(Template.created_at)
            ).all()
            return [TemplateLayout.from_model(r) for r in rows]

    def create(
        self,
        name: str,
        template_image_path: str,
        fields: list[FieldSpec],
        canvas_width: int = 0,
        canvas_height: int = 0,
        created_by: str | None = None,
    ) -> TemplateLayout:
        with self.db.session() as session:
            row = Template(
                name=name,
                template_image_path=template_image_path,
                canvas_width=canvas_width or 0,
                canvas_height=canvas_height or 0,
                created_by=created_by,
            )
            for order, spec in enumerate(fields):
                row.fields.append(
                    TemplateField(
                        label=spec.label,
                        field_type=spec.field_type,
                        is_static=spec.is_static,
                        default_value=spec.default_value,
                        position_x=spec.position_x,
                        position_y=spec.position_y,
                        font_size=spec.font_size,
                        font_family=spec.font_family,
                        font_color=spec.font_color,
                        text_align=spec.text_align,
                        sort_order=order,
                    )
                )
            session.add(row)
            session.flush()
            return TemplateLayout.from_model(row)

    def delete(self, template_id: str) -> TemplateLayout | None:
        with self.db.session() as session:
            row = session.get(Template, template_id)
            if row is None:
                return None
            layout = TemplateLayout.from_model(row)
            session.delete(row)
            return layout


class CertificateRepository:
    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        template_id: str | None,
        user_id: str,
        student_name: str | None,
        course_name: str | None,
        completion_date: str | None,
        verification_code: str,
        custom_data: dict[str, Any] | None = None,
    ) -> Certificate:
        with self.db.session() as session:
            certificate = Certificate(
                template_id=template_id,
                user_id=user_id,
                student_name=student_name,
                course_name=course_name,
                completion_date=completion_date or None,
                verification_code=verification_code,
                custom_data=dict(custom_data or {}),
            )
            session.add(certificate)
            session.flush()
            return certificate

    def update_pdf_path(self, certificate_id: str, pdf_path: str) -> Certificate | None:
        with self.db.session() as session:
            certificate = session.get(Certificate, certificate_id)
            if certificate is None:
                return None
            certificate.pdf_path = pdf_path
            session.flush()
            return certificate

    def get_by_id(self, certificate_id: str) -> Certificate | None:
        with self.db.session() as session:
            return session.get(Certificate, certificate_id)

    def get_by_verification_code(self, code: str) -> Certificate | None:
        with self.db.session() as session:
            return session.scalars(
                select(Certificate).where(Certificate.verification_code == code)
            ).first()

    def list_by_user(self, user_id: str) -> list[Certificate]:
        with self.db.session() as session:
            return list(
                session.scalars(
                    select(Certificate)
                    .where(Certificate.user_id == user_id)
                    .order_by(Certificate.created_at.desc())
                ).all()
            )

    def list_all(self) -> list[Certificate]:
        with self.db.session() as session:
            return list(
                session.scalars(select(Certificate).order_by(Certificate.created_at.desc())).all()
            )

    def delete(self, certificate_id: str, user_id: str) -> Certificate | None:
        """Delete the caller's certificate; returns the removed row or None."""
        with self.db.session() as session:
            certificate = session.scalars(
                select(Certificate).where(
                    Certificate.id == certificate_id, Certificate.user_id == user_id
                )
            ).first()
            if certificate is None:
                return None
            session.delete(certificate)
            return certificate
