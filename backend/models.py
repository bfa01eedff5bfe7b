import uuid
from datetime import date as date_cls
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

import settings

MAX_PHOTOS_PER_SECTION = 4


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}

SEVERITY_COLORS: Dict[Severity, str] = {
    Severity.CRITICAL: "#dc2626",
    Severity.HIGH: "#ea580c",
    Severity.MEDIUM: "#ca8a04",
    Severity.LOW: "#16a34a",
}

URGENT_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


def severity_rank(severity: Severity) -> int:
    return SEVERITY_RANK[Severity(severity)]


def sort_sections_by_severity(sections: List["Section"]) -> List["Section"]:
    """Most severe first; ``sorted`` is stable so equal ranks keep insertion order."""
    return sorted(sections, key=lambda s: severity_rank(s.severity))


def new_section_id() -> str:
    return uuid.uuid4().hex


def today_iso() -> str:
    return date_cls.today().isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Section(_CamelModel):
    id: str = Field(default_factory=new_section_id)
    issue: str = ""
    title: Optional[str] = None
    description: str = ""
    severity: Severity = Severity.MEDIUM
    photos: List[str] = Field(default_factory=list, max_length=MAX_PHOTOS_PER_SECTION)

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id_gets_token(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return new_section_id()
        return str(value)

    @property
    def display_title(self) -> str:
        return self.title or self.issue


class InspectionRecord(_CamelModel):
    company: str = settings.COMPANY_NAME
    license: str = settings.COMPANY_LICENSE
    customer_name: str = ""
    customer_email: str = ""
    address: str = ""
    date: str = Field(default_factory=today_iso)
    inspector: str = settings.DEFAULT_INSPECTOR
    estimator: str = settings.DEFAULT_ESTIMATOR
    logo: str = settings.COMPANY_LOGO
    sections: List[Section] = Field(default_factory=list)
    final_notes: str = ""
    inspector_field_notes: str = ""
    row_id: Optional[int] = None

    @field_validator("logo", "final_notes", "inspector_field_notes", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return "" if value is None else value

    def is_reportable(self) -> bool:
        return bool(self.address.strip()) and len(self.sections) > 0

    def is_blank(self) -> bool:
        return not (
            self.sections
            or self.address
            or self.customer_name
            or self.customer_email
            or self.final_notes
            or self.inspector_field_notes
        )


class InspectionSummary(_CamelModel):
    id: int
    address: str = "No address"
    date: str = ""
    customer_name: str = ""
    inspector: str = ""
    total_issues: str = "0"


# ===================== Request payloads =====================

class DescriptionRequest(_CamelModel):
    issue: str
    severity: Severity = Severity.MEDIUM


class SectionBrief(_CamelModel):
    issue: str = ""
    severity: Severity = Severity.MEDIUM


class FinalNotesRequest(_CamelModel):
    sections: List[SectionBrief]
    address: str = ""
    inspector: str = ""
    inspector_field_notes: str = ""


class TranslateRequest(_CamelModel):
    text: str


class EmailSendRequest(_CamelModel):
    record: InspectionRecord
    to: str
    cc: str = ""
    subject: str
    body: str


class SessionFieldsUpdate(_CamelModel):
    company: Optional[str] = None
    license: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    address: Optional[str] = None
    date: Optional[str] = None
    inspector: Optional[str] = None
    estimator: Optional[str] = None
    logo: Optional[str] = None
    final_notes: Optional[str] = None
    inspector_field_notes: Optional[str] = None


class SessionEmailRequest(_CamelModel):
    to: str
    cc: str = ""
    subject: str
    body: str
