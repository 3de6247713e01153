import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

# Field types that are filled in by the server, never by the user.
SYSTEM_FIELD_TYPES = frozenset({"certificate_id", "verification_link"})


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Template(Base):
    __tablename__ = "templates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    template_image_path: Mapped[str] = mapped_column(String(512))
    canvas_width: Mapped[int] = mapped_column(Integer, default=0)
    canvas_height: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    fields: Mapped[list["TemplateField"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by=lambda: [TemplateField.sort_order, TemplateField.id],
    )


class TemplateField(Base):
    __tablename__ = "template_fields"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    template_id: Mapped[str] = mapped_column(ForeignKey("templates.id", ondelete="CASCADE"))
    label: Mapped[str] = mapped_column(String(255))
    field_type: Mapped[str] = mapped_column(String(64))
    is_static: Mapped[bool] = mapped_column(Boolean, default=False)
    default_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    position_x: Mapped[float] = mapped_column(Float, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, default=0.0)
    font_size: Mapped[float] = mapped_column(Float, default=24.0)
    font_family: Mapped[str] = mapped_column(String(128), default="Helvetica")
    font_color: Mapped[str] = mapped_column(String(32), default="#000000")
    text_align: Mapped[str] = mapped_column(String(16), default="center")
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    template: Mapped[Template] = relationship(back_populates="fields")


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    # Certificates outlive their template.
    template_id: Mapped[str | None] = mapped_column(
        ForeignKey("templates.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    student_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    course_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completion_date: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verification_code: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    custom_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    pdf_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "student_name": self.student_name,
            "course_name": self.course_name,
            "completion_date": self.completion_date,
            "verification_code": self.verification_code,
            "custom_data": self.custom_data or {},
            "pdf_path": self.pdf_path,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
