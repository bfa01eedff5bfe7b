"""
PDF rendering of an inspection report.

The document is composed from flowables rather than rasterized from the
on-screen preview, so there is nothing to wait for before rendering: photos
are decoded up front and an unreadable photo is skipped instead of failing
the report.
"""

import base64
import logging
import os
import re
from datetime import datetime
from html import escape
from io import BytesIO
from typing import List, Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image as RLImage,
    KeepTogether,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

import settings
from ai_text import FINAL_NOTES_HEADERS
from models import SEVERITY_COLORS, InspectionRecord, Section, Severity, sort_sections_by_severity

logger = logging.getLogger(__name__)

MARGIN = 40
PHOTO_HEIGHT = 150
LOGO_SIZE = 64

TEXT_DARK = HexColor("#111827")
TEXT_MUTED = HexColor("#6b7280")
BORDER = HexColor("#e5e7eb")


# ===================== Helpers =====================

def build_pdf_filename(date: str, address: str, extension: str = "pdf") -> str:
    date_digits = re.sub(r"\D", "", date or "")
    first_segment = (address or "").split(",")[0].strip()
    slug = re.sub(r"\W+", "_", first_segment) if first_segment else ""
    return f"{settings.PDF_FILENAME_PREFIX}_{date_digits}_{slug or 'Address'}.{extension}"


def format_description(description: str) -> str:
    text = re.sub(r"OBSERVED CONDITION:\s*", "OBSERVED CONDITION:\n", description or "", count=1, flags=re.IGNORECASE)
    text = re.sub(
        r"\s*POTENTIAL IMPACT IF UNADDRESSED:\s*",
        "\n\nPOTENTIAL IMPACT IF UNADDRESSED:\n",
        text,
        count=1,
        flags=re.IGNORECASE,
    )
    return text.strip()


def decode_image(uri: str) -> Optional[BytesIO]:
    """Data URI or local file path -> image bytes; None when unusable."""
    if not uri:
        return None
    try:
        if uri.startswith("data:"):
            _, b64data = uri.split(",", 1)
            return BytesIO(base64.b64decode(b64data))
        if os.path.exists(uri):
            with open(uri, "rb") as f:
                return BytesIO(f.read())
    except (ValueError, OSError) as exc:
        logger.warning("Could not decode image: %s", exc)
        return None
    logger.info("Skipping image that is neither a data URI nor a local file")
    return None


def _scaled_image(uri: str, max_width: float, max_height: float) -> Optional[RLImage]:
    data = decode_image(uri)
    if data is None:
        return None
    try:
        width, height = ImageReader(data).getSize()
    except Exception as exc:  # reportlab wraps PIL errors in plain Exceptions
        logger.warning("Skipping unreadable image: %s", exc)
        return None
    data.seek(0)
    scale = min(max_width / float(width), max_height / float(height))
    return RLImage(data, width=width * scale, height=height * scale)


def _paragraph_text(text: str) -> str:
    return escape(text or "").replace("\n", "<br/>")


# ===================== Styles =====================

def _styles():
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ReportTitle", parent=base["Title"], fontSize=18, leading=22,
            alignment=0, textColor=TEXT_DARK, spaceAfter=4,
        ),
        "subtitle": ParagraphStyle(
            "ReportSubtitle", parent=base["Normal"], fontSize=10, textColor=TEXT_MUTED,
        ),
        "heading": ParagraphStyle(
            "SectionHeading", parent=base["Heading2"], fontSize=14, leading=18,
            textColor=TEXT_DARK, spaceBefore=10, spaceAfter=8,
        ),
        "label": ParagraphStyle(
            "Label", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=10,
            textColor=HexColor("#4b5563"),
        ),
        "value": ParagraphStyle("Value", parent=base["Normal"], fontSize=10),
        "body": ParagraphStyle(
            "Body", parent=base["Normal"], fontSize=10, leading=15,
            textColor=HexColor("#374151"), spaceAfter=6,
        ),
        "finding_title": ParagraphStyle(
            "FindingTitle", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=12, leading=15,
        ),
        "badge": ParagraphStyle(
            "Badge", parent=base["Normal"], fontName="Helvetica-Bold", fontSize=8,
            textColor=colors.white, alignment=TA_CENTER,
        ),
    }


# ===================== Blocks =====================

def _header(record: InspectionRecord, styles, width: float) -> List:
    title = Paragraph(escape(f"Roof Inspection Report — {record.company}"), styles["title"])
    license_line = Paragraph(escape(f"License: {record.license}"), styles["subtitle"])
    logo = _scaled_image(record.logo, LOGO_SIZE * 1.5, LOGO_SIZE)

    if logo is not None:
        cells = [[logo, [title, license_line]]]
        col_widths = [LOGO_SIZE * 1.5 + 12, width - LOGO_SIZE * 1.5 - 12]
    else:
        cells = [[[title, license_line]]]
        col_widths = [width]

    table = Table(cells, colWidths=col_widths)
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LINEBELOW", (0, 0), (-1, -1), 2, BORDER),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 10),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))
    return [table, Spacer(1, 12)]


def _label_rows(rows: List[Tuple[str, str]], styles, width: float) -> Table:
    data = [
        [Paragraph(escape(label), styles["label"]), Paragraph(escape(value or ""), styles["value"])]
        for label, value in rows
    ]
    table = Table(data, colWidths=[100, width - 100])
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]))
    return table


def _final_notes(final_notes: str, styles) -> List:
    flowables = [Paragraph("Inspector's Final Notes &amp; Recommendations", styles["heading"])]
    for block in re.split(r"\n\s*\n", final_notes.strip()):
        lines = []
        for line in block.split("\n"):
            stripped = line.strip()
            if stripped.rstrip(":").upper() in {h.rstrip(":") for h in FINAL_NOTES_HEADERS}:
                lines.append(f"<b>{escape(stripped)}</b>")
            else:
                lines.append(escape(stripped))
        flowables.append(Paragraph("<br/>".join(lines), styles["body"]))
    return flowables


def _photo_grid(photos: List[str], width: float) -> Optional[Table]:
    cell_width = (width - 8) / 2
    images = []
    for photo in photos:
        image = _scaled_image(photo, cell_width - 8, PHOTO_HEIGHT)
        if image is not None:
            images.append(image)
    if not images:
        return None

    rows = [images[i:i + 2] for i in range(0, len(images), 2)]
    if len(rows[-1]) == 1:
        rows[-1].append("")
    table = Table(rows, colWidths=[cell_width, cell_width])
    table.setStyle(TableStyle([
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
    ]))
    return table


def _finding(number: int, section: Section, styles, width: float) -> KeepTogether:
    severity = Severity(section.severity)
    badge = Table([[Paragraph(severity.value, styles["badge"])]], colWidths=[60])
    badge.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), HexColor(SEVERITY_COLORS[severity])),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
    ]))
    header = Table(
        [[Paragraph(escape(f"{number}. {section.display_title}"), styles["finding_title"]), badge]],
        colWidths=[width - 70, 70],
    )
    header.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LINEABOVE", (0, 0), (-1, 0), 1, BORDER),
        ("TOPPADDING", (0, 0), (-1, -1), 8),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))

    content = [
        header,
        Spacer(1, 6),
        Paragraph(_paragraph_text(format_description(section.description)), styles["body"]),
    ]
    grid = _photo_grid(section.photos, width)
    if grid is not None:
        content.append(grid)
    content.append(Spacer(1, 14))
    # KeepTogether falls back to splitting when a finding is taller than a page
    return KeepTogether(content)


# ===================== Entry point =====================

def generate_report_pdf(record: InspectionRecord) -> Optional[Tuple[bytes, str]]:
    """Render ``record``; None when there is no address or no section."""
    if not record.is_reportable():
        return None

    styles = _styles()
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN + 20,
        title=f"Roof Inspection Report - {record.address}",
        author=record.company,
    )
    width = doc.width

    story: List = []
    story.extend(_header(record, styles, width))

    if record.customer_name or record.customer_email:
        story.append(Paragraph("Customer Information", styles["heading"]))
        rows = []
        if record.customer_name:
            rows.append(("Name:", record.customer_name))
        if record.customer_email:
            rows.append(("Email:", record.customer_email))
        story.append(_label_rows(rows, styles, width))

    story.append(Paragraph("Inspection Details", styles["heading"]))
    story.append(_label_rows(
        [
            ("Address:", record.address),
            ("Date:", record.date),
            ("Inspector:", record.inspector),
            ("Estimator:", record.estimator),
        ],
        styles,
        width,
    ))

    if record.final_notes.strip():
        story.extend(_final_notes(record.final_notes, styles))

    story.append(Paragraph("Inspection Findings", styles["heading"]))
    for number, section in enumerate(sort_sections_by_severity(record.sections), start=1):
        story.append(_finding(number, section, styles, width))

    footer_text = (
        f"Prepared by {record.estimator.strip()}. © {datetime.now().year} {record.company}. "
        "All rights reserved."
    )

    def draw_footer(canvas, document):
        canvas.saveState()
        canvas.setStrokeColor(BORDER)
        canvas.line(MARGIN, MARGIN + 10, LETTER[0] - MARGIN, MARGIN + 10)
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(HexColor("#9ca3af"))
        canvas.drawCentredString(LETTER[0] / 2.0, MARGIN, footer_text)
        canvas.drawRightString(LETTER[0] - MARGIN, MARGIN - 12, f"Page {document.page}")
        canvas.restoreState()

    doc.build(story, onFirstPage=draw_footer, onLaterPages=draw_footer)
    pdf_bytes = buffer.getvalue()
    filename = build_pdf_filename(record.date, record.address)
    logger.info("Rendered %s (%d bytes, %d sections)", filename, len(pdf_bytes), len(record.sections))
    return pdf_bytes, filename
