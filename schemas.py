from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from repositories import FieldSpec


class GenerateCertificateRequest(BaseModel):
    # Field values arrive as extra keys named after field_type (or the form label).
    model_config = ConfigDict(extra="allow")

    template_id: str | None = None

    def field_values(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class TemplateFieldIn(BaseModel):
    label: str = Field(..., min_length=1)
    field_type: str = Field(..., min_length=1)
    is_static: bool = False
    default_value: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0
    font_size: float = Field(24.0, gt=0)
    font_family: str = "Helvetica"
    font_color: str = "#000000"
    text_align: str = Field("center", pattern="^(left|center|right)$")

    def to_spec(self) -> FieldSpec:
        return FieldSpec(**self.model_dump())

