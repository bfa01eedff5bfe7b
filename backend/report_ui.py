from html import escape

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from inspection_session import InspectionSession
from models import SEVERITY_COLORS, InspectionRecord, Severity, sort_sections_by_severity
from report_pdf import format_description
from services import get_session

router = APIRouter()

PREVIEW_CSS = """
        :root {
            font-family: system-ui, -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
        }
        body {
            margin: 0;
            padding: 0;
            background: #f9fafb;
            color: #111827;
        }
        .page {
            max-width: 900px;
            margin: 0 auto;
            padding: 24px 16px 48px;
        }
        .card {
            background: #ffffff;
            border-radius: 12px;
            padding: 24px;
            border: 1px solid #e5e7eb;
        }
        .header {
            display: flex;
            align-items: center;
            gap: 16px;
            border-bottom: 2px solid #e5e7eb;
            padding-bottom: 16px;
        }
        .header img {
            height: 80px;
            width: auto;
            object-fit: contain;
        }
        h1 { font-size: 20px; margin: 0; }
        h2 { font-size: 18px; margin: 0 0 12px; }
        h3 { font-size: 16px; margin: 0 0 8px; }
        .block {
            margin-top: 16px;
            padding-top: 16px;
            border-top: 1px solid #e5e7eb;
        }
        .grid-2 {
            display: grid;
            grid-template-columns: 1fr 1fr;
            gap: 8px;
            font-size: 14px;
        }
        .label { font-weight: 600; }
        .small { font-size: 0.85rem; color: #6b7280; }
        .report-block {
            font-size: 14px;
            line-height: 1.6;
            white-space: pre-wrap;
        }
        .finding {
            border: 1px solid #e5e7eb;
            border-radius: 12px;
            padding: 16px;
            margin-bottom: 24px;
        }
        .finding-header {
            display: flex;
            justify-content: space-between;
            align-items: center;
            margin-bottom: 12px;
        }
        .badge {
            display: inline-flex;
            align-items: center;
            border-radius: 999px;
            padding: 2px 10px;
            font-size: 0.75rem;
            font-weight: 600;
            color: #ffffff;
        }
        .photos {
            display: grid;
            grid-template-columns: repeat(2, minmax(0, 1fr));
            gap: 8px;
            margin-top: 12px;
        }
        .photos img {
            width: 100%;
            height: 300px;
            object-fit: cover;
            border-radius: 8px;
        }
        .fade { opacity: 0.6; }
        @media (max-width: 700px) {
            .grid-2, .photos { grid-template-columns: 1fr; }
        }
"""


def _field(label: str, value: str) -> str:
    return f'<div><span class="label">{escape(label)}:</span> {escape(value or "—")}</div>'


def _findings_html(record: InspectionRecord) -> str:
    if not record.sections:
        return '<p class="small fade">No findings yet.</p>'

    parts = []
    for number, section in enumerate(sort_sections_by_severity(record.sections), start=1):
        severity = Severity(section.severity)
        photos = "".join(
            f'<img src="{escape(photo, quote=True)}" alt="Finding {number} photo {i}" />'
            for i, photo in enumerate(section.photos, start=1)
        )
        parts.append(
            '<div class="finding">'
            '<div class="finding-header">'
            f"<h3>{number}. {escape(section.display_title)}</h3>"
            f'<span class="badge" style="background: {SEVERITY_COLORS[severity]};">{severity.value}</span>'
            "</div>"
            f'<div class="report-block">{escape(format_description(section.description))}</div>'
            + (f'<div class="photos">{photos}</div>' if photos else "")
            + "</div>"
        )
    return "".join(parts)


def render_preview_html(record: InspectionRecord) -> str:
    """On-screen preview with the same content and order as the PDF."""
    logo = (
        f'<img src="{escape(record.logo, quote=True)}" alt="Company Logo" />' if record.logo else ""
    )

    customer = ""
    if record.customer_name or record.customer_email:
        fields = ""
        if record.customer_name:
            fields += _field("Name", record.customer_name)
        if record.customer_email:
            fields += _field("Email", record.customer_email)
        customer = (
            '<div class="block"><h3>Customer Information</h3>'
            f'<div class="grid-2">{fields}</div></div>'
        )

    final_notes = ""
    if record.final_notes.strip():
        final_notes = (
            '<div class="block"><h2>Inspector\'s Final Notes &amp; Recommendations</h2>'
            f'<div class="report-block">{escape(record.final_notes)}</div></div>'
        )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8" />
    <title>Roof Inspection Report — {escape(record.address or record.company)}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <style>{PREVIEW_CSS}</style>
</head>
<body>
<div class="page">
    <div class="card">
        <div class="header">
            {logo}
            <div>
                <h1>Roof Inspection Report — {escape(record.company)}</h1>
                <p class="small">License: {escape(record.license)}</p>
            </div>
        </div>
        {customer}
        <div class="block">
            <div class="grid-2">
                {_field("Address", record.address)}
                {_field("Inspection Date", record.date)}
                {_field("Inspector", record.inspector)}
                {_field("Estimator", record.estimator)}
            </div>
        </div>
        {final_notes}
        <div class="block">
            <h2>Inspection Findings</h2>
            {_findings_html(record)}
        </div>
    </div>
</div>
</body>
</html>
"""


@router.get("/report-preview", response_class=HTMLResponse)
def session_report_preview(session: InspectionSession = Depends(get_session)):
    return HTMLResponse(render_preview_html(session.record))


@router.post("/report-preview", response_class=HTMLResponse)
def report_preview(record: InspectionRecord):
    return HTMLResponse(render_preview_html(record))
