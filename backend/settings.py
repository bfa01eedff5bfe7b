import os
import logging
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ===================== Paths / Directories =====================

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_ROOT = os.getenv("DATA_ROOT") or BASE_DIR

TEMPLATE_DIR = os.path.join(DATA_ROOT, "templates")
SNAPSHOT_DIR = os.path.join(DATA_ROOT, "snapshots")
SNAPSHOT_PATH = os.path.join(SNAPSHOT_DIR, "current_inspection.json")
GATE_VOCABULARY_PATH = os.getenv(
    "GATE_VOCABULARY_PATH", os.path.join(DATA_ROOT, "gate_vocabulary.json")
)
DOCX_TEMPLATE_PATH = os.path.join(TEMPLATE_DIR, "inspection_report_template.docx")

os.makedirs(TEMPLATE_DIR, exist_ok=True)
os.makedirs(SNAPSHOT_DIR, exist_ok=True)

# ===================== Company defaults =====================

COMPANY_NAME = os.getenv("COMPANY_NAME", "EHL Roofing LLC")
COMPANY_LICENSE = os.getenv("COMPANY_LICENSE", "CA #1145092")
COMPANY_PHONE = os.getenv("COMPANY_PHONE", "(415) 964-9422")
COMPANY_EMAIL = os.getenv("COMPANY_EMAIL", "sales@ehlroofing.com")
COMPANY_CITY = os.getenv("COMPANY_CITY", "Daly City, CA")
COMPANY_LOGO = os.getenv("COMPANY_LOGO", "")
DEFAULT_INSPECTOR = os.getenv("DEFAULT_INSPECTOR", "Lester Herrera H.")
DEFAULT_ESTIMATOR = os.getenv("DEFAULT_ESTIMATOR", "Robertson Carrillo Z.")
PDF_FILENAME_PREFIX = os.getenv("PDF_FILENAME_PREFIX", "EHL_Roofing_Inspection")

# ===================== OpenAI =====================

OPENAI_API_KEY = (os.getenv("OPENAI_API_KEY") or "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
TRANSCRIBE_MODEL = os.getenv("TRANSCRIBE_MODEL", "whisper-1")

# ===================== Baserow =====================

BASEROW_API_URL = (os.getenv("BASEROW_API_URL") or "https://api.baserow.io").strip()
BASEROW_API_TOKEN = (os.getenv("BASEROW_API_TOKEN") or "").strip()
BASEROW_TABLE_ID = os.getenv("BASEROW_TABLE_ID", "733936")
BASEROW_PAGE_SIZE = int(os.getenv("BASEROW_PAGE_SIZE", "50"))
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

DEFAULT_BASEROW_FIELDS: Dict[str, str] = {
    "CUSTOMER_NAME": "field_6173181",
    "CUSTOMER_EMAIL": "field_6173182",
    "ADDRESS": "field_6173183",
    "INSPECTION_DATE": "field_6173184",
    "INSPECTOR_NAME": "field_6173185",
    "ESTIMATOR_NAME": "field_6173186",
    "COMPANY_NAME": "field_6173187",
    "LICENSE_NUMBER": "field_6173188",
    "COMPANY_LOGO_URL": "field_6173189",
    "SECTIONS_JSON": "field_6173190",
    "TOTAL_ISSUES": "field_6173191",
    "FINAL_NOTES": "field_6173195",
}


def load_baserow_fields() -> Dict[str, str]:
    """Field ids can be overridden one by one with BASEROW_FIELD_<NAME>."""
    fields = DEFAULT_BASEROW_FIELDS.copy()
    for key in fields:
        override = os.getenv(f"BASEROW_FIELD_{key}")
        if override:
            fields[key] = override.strip()
    return fields


BASEROW_FIELDS = load_baserow_fields()

# ===================== SMTP =====================

SMTP_HOST = (os.getenv("SMTP_HOST") or "").strip()
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USER = (os.getenv("SMTP_USER") or "").strip()
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD") or ""

# ===================== Logging / Session =====================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

AUTO_SAVE_DELAY = float(os.getenv("AUTO_SAVE_DELAY", "5"))
AUTO_SAVE_ENABLED = os.getenv("AUTO_SAVE_ENABLED", "true").lower() in ("1", "true", "yes")


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS")
    if raw:
        return [o.strip() for o in raw.split(",") if o.strip()]
    return [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://localhost:3000",
        "https://127.0.0.1:3000",
    ]


def warn_missing_configuration() -> None:
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set. AI endpoints will fail.")
    if not BASEROW_API_TOKEN:
        logger.warning("BASEROW_API_TOKEN is not set. Save/load will be unavailable.")
    if not (SMTP_HOST and SMTP_USER and SMTP_PASSWORD):
        logger.warning("SMTP_HOST/SMTP_USER/SMTP_PASSWORD not set. Email sending is disabled.")
