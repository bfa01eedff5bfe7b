import logging
import os
from io import BytesIO
from typing import Dict, List, Optional, Tuple

from docx import Document
from docx.shared import Pt, RGBColor

import settings
from models import SEVERITY_COLORS, InspectionRecord, Section, Severity, sort_sections_by_severity
from report_pdf import build_pdf_filename, format_description

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ===================== Template placeholder helpers =====================

def _replace_placeholders_in_paragraph(paragraph, mapping: Dict[str, str]) -> None:
    if not paragraph.text:
        return
    for key, value in mapping.items():
        if key in paragraph.text:
            for run in paragraph.runs:
                if key in run.text:
                    run.text = run.text.replace(key, value)


def _replace_placeholders_in_table(table, mapping: Dict[str, str]) -> None:
    for row in table.rows:
        for cell in row.cells:
            for paragraph in cell.paragraphs:
                _replace_placeholders_in_paragraph(paragraph, mapping)


def _fill_findings_table(doc, sections: List[Section]) -> None:
    """
    Look for a table row that contains:
    {{ITEM}}, {{SEVERITY}}, {{DESCRIPTION}}
    and fill one row per section, adding rows as needed.
    """
    if not sections:
        return

    for table in doc.tables:
        template_row_idx = None
        for row_idx, row in enumerate(table.rows):
            row_text = " ".join(cell.text for cell in row.cells)
            if "{{ITEM}}" in row_text and "{{DESCRIPTION}}" in row_text:
                template_row_idx = row_idx
                break

        if template_row_idx is None:
            continue

        template_texts = [cell.text for cell in table.rows[template_row_idx].cells]
        existing_after = len(table.rows) - template_row_idx
        while existing_after < len(sections):
            new_row = table.add_row()
            for cell, text in zip(new_row.cells, template_texts):
                cell.text = text
            existing_after += 1

        for i, section in enumerate(sections):
            row = table.rows[template_row_idx + i]
            row_mapping = {
                "{{ITEM}}": f"{i + 1}. {section.display_title}",
                "{{SEVERITY}}": Severity(section.severity).value,
                "{{DESCRIPTION}}": format_description(section.description),
            }
            for cell in row.cells:
                for paragraph in cell.paragraphs:
                    _replace_placeholders_in_paragraph(paragraph, row_mapping)

        return  # only fill first matching table


def fill_docx_template(doc, record: InspectionRecord) -> None:
    """
    Replace simple placeholders and fill the findings table.

    Placeholders understood in a template:
      {{COMPANY}} {{LICENSE}} {{CUSTOMER_NAME}} {{CUSTOMER_EMAIL}}
      {{ADDRESS}} {{INSPECTION_DATE}} {{INSPECTOR}} {{ESTIMATOR}}
      {{FINAL_NOTES}} {{TOTAL_ISSUES}}
    """
    mapping = {
        "{{COMPANY}}": record.company,
        "{{LICENSE}}": record.license,
        "{{CUSTOMER_NAME}}": record.customer_name,
        "{{CUSTOMER_EMAIL}}": record.customer_email,
        "{{ADDRESS}}": record.address,
        "{{INSPECTION_DATE}}": record.date,
        "{{INSPECTOR}}": record.inspector,
        "{{ESTIMATOR}}": record.estimator,
        "{{FINAL_NOTES}}": record.final_notes,
        "{{TOTAL_ISSUES}}": str(len(record.sections)),
    }

    for paragraph in doc.paragraphs:
        _replace_placeholders_in_paragraph(paragraph, mapping)

    for table in doc.tables:
        _replace_placeholders_in_table(table, mapping)

    _fill_findings_table(doc, sort_sections_by_severity(record.sections))


# ===================== Plain document =====================

def _hex_to_rgb(value: str) -> RGBColor:
    value = value.lstrip("#")
    return RGBColor(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


def build_plain_document(record: InspectionRecord):
    doc = Document()
    doc.add_heading(f"Roof Inspection Report — {record.company}", level=0)
    doc.add_paragraph(f"License: {record.license}")

    if record.customer_name or record.customer_email:
        doc.add_heading("Customer Information", level=1)
        if record.customer_name:
            doc.add_paragraph(f"Name: {record.customer_name}")
        if record.customer_email:
            doc.add_paragraph(f"Email: {record.customer_email}")

    doc.add_heading("Inspection Details", level=1)
    for label, value in (
        ("Address", record.address),
        ("Date", record.date),
        ("Inspector", record.inspector),
        ("Estimator", record.estimator),
    ):
        doc.add_paragraph(f"{label}: {value}")

    if record.final_notes.strip():
        doc.add_heading("Inspector's Final Notes & Recommendations", level=1)
        doc.add_paragraph(record.final_notes.strip())

    doc.add_heading("Inspection Findings", level=1)
    for number, section in enumerate(sort_sections_by_severity(record.sections), start=1):
        severity = Severity(section.severity)
        heading = doc.add_heading(f"{number}. {section.display_title} ", level=2)
        badge = heading.add_run(f"[{severity.value}]")
        badge.font.size = Pt(10)
        badge.font.color.rgb = _hex_to_rgb(SEVERITY_COLORS[severity])
        doc.add_paragraph(format_description(section.description))
        if section.photos:
            doc.add_paragraph(f"Photos attached in PDF report: {len(section.photos)}")

    return doc


def generate_report_docx(
    record: InspectionRecord,
    template_path: Optional[str] = None,
) -> Optional[Tuple[bytes, str]]:
    """Editable Word copy of the report; None under the same rules as the PDF."""
    if not record.is_reportable():
        return None

    template_path = template_path or settings.DOCX_TEMPLATE_PATH
    if template_path and os.path.exists(template_path):
        logger.info("Filling DOCX template %s", template_path)
        doc = Document(template_path)
        fill_docx_template(doc, record)
    else:
        doc = build_plain_document(record)

    buf = BytesIO()
    doc.save(buf)
    filename = build_pdf_filename(record.date, record.address, extension="docx")
    return buf.getvalue(), filename
