"""
Baserow persistence for inspections.

One inspection is one row. Field ids are configuration (``BASEROW_FIELDS``);
sections are stored as a JSON string in a single long-text field.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

import settings
from exceptions import RemoteServiceError
from models import InspectionRecord, InspectionSummary, Section

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
TOKEN_MISSING = "Baserow token missing"


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match((value or "").strip()))


class BaserowStore:
    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        table_id: Optional[str] = None,
        fields: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.token = (token if token is not None else settings.BASEROW_API_TOKEN).strip()
        self.api_url = (api_url or settings.BASEROW_API_URL).rstrip("/")
        self.table_id = str(table_id or settings.BASEROW_TABLE_ID)
        self.fields = fields or settings.BASEROW_FIELDS
        self.session = session or requests.Session()
        self.timeout = timeout or settings.HTTP_TIMEOUT

    @property
    def configured(self) -> bool:
        return bool(self.token)

    # ---------- HTTP ----------

    def _rows_url(self, row_id: Optional[int] = None) -> str:
        base = f"{self.api_url}/api/database/rows/table/{self.table_id}/"
        return f"{base}{row_id}/" if row_id is not None else base

    def _request(self, method: str, url: str, **kwargs) -> Any:
        headers = {"Authorization": f"Token {self.token}"}
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RemoteServiceError(f"Baserow request failed: {exc}") from exc

        if method == "DELETE" and resp.ok:
            return None
        try:
            payload = resp.json()
        except ValueError as exc:
            raise RemoteServiceError(f"Baserow returned invalid JSON ({resp.status_code})") from exc
        if not resp.ok:
            detail = payload.get("detail") if isinstance(payload, dict) else None
            raise RemoteServiceError(f"Baserow error {resp.status_code}: {detail or payload}")
        return payload

    # ---------- mapping ----------

    def to_row(self, record: InspectionRecord) -> Dict[str, str]:
        f = self.fields
        sections = [s.model_dump(mode="json") for s in record.sections]
        return {
            f["CUSTOMER_NAME"]: record.customer_name or "",
            f["CUSTOMER_EMAIL"]: record.customer_email or "",
            f["ADDRESS"]: record.address or "",
            f["INSPECTION_DATE"]: record.date or "",
            f["INSPECTOR_NAME"]: record.inspector or "",
            f["ESTIMATOR_NAME"]: record.estimator or "",
            f["COMPANY_NAME"]: record.company or settings.COMPANY_NAME,
            f["LICENSE_NUMBER"]: record.license or settings.COMPANY_LICENSE,
            f["COMPANY_LOGO_URL"]: record.logo or "",
            f["SECTIONS_JSON"]: json.dumps(sections),
            f["TOTAL_ISSUES"]: str(len(record.sections)),
            f["FINAL_NOTES"]: record.final_notes or "",
        }

    def from_row(self, row: Dict[str, Any]) -> InspectionRecord:
        f = self.fields

        def text(key: str, default: str = "") -> str:
            value = row.get(f[key])
            return str(value) if value not in (None, "") else default

        try:
            raw_sections = json.loads(row.get(f["SECTIONS_JSON"]) or "[]")
            sections = [Section.model_validate(s) for s in raw_sections]
        except (TypeError, ValueError, ValidationError) as exc:
            logger.warning("Row %s has unreadable sections JSON: %s", row.get("id"), exc)
            sections = []

        return InspectionRecord(
            company=text("COMPANY_NAME", settings.COMPANY_NAME),
            license=text("LICENSE_NUMBER", settings.COMPANY_LICENSE),
            customer_name=text("CUSTOMER_NAME"),
            customer_email=text("CUSTOMER_EMAIL"),
            address=text("ADDRESS"),
            date=text("INSPECTION_DATE"),
            inspector=text("INSPECTOR_NAME"),
            estimator=text("ESTIMATOR_NAME"),
            logo=text("COMPANY_LOGO_URL"),
            sections=sections,
            final_notes=text("FINAL_NOTES"),
            row_id=row.get("id"),
        )

    # ---------- operations ----------

    def save(self, record: InspectionRecord) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": TOKEN_MISSING}
        if record.customer_email and not is_valid_email(record.customer_email):
            return {"success": False, "error": "Invalid customer email"}

        row = self.to_row(record)
        try:
            if record.row_id is not None:
                result = self._request("PATCH", self._rows_url(record.row_id), json=row)
            else:
                result = self._request("POST", self._rows_url(), json=row)
        except RemoteServiceError as exc:
            logger.error("Baserow save error: %s", exc)
            return {"success": False, "error": "Failed to save to Baserow"}

        logger.info("Inspection saved to Baserow: %s", result.get("id"))
        return {"success": True, "id": result.get("id")}

    def load(self, row_id: int) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": TOKEN_MISSING}
        try:
            row = self._request("GET", self._rows_url(row_id))
        except RemoteServiceError as exc:
            logger.error("Baserow load error: %s", exc)
            return {"success": False, "error": "Failed to load from Baserow"}
        return {"success": True, "data": self.from_row(row)}

    def list(self, page_size: Optional[int] = None) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": TOKEN_MISSING, "inspections": []}

        f = self.fields
        try:
            result = self._request(
                "GET", self._rows_url(), params={"size": page_size or settings.BASEROW_PAGE_SIZE}
            )
            inspections = [
                InspectionSummary(
                    id=r["id"],
                    address=r.get(f["ADDRESS"]) or "No address",
                    date=r.get(f["INSPECTION_DATE"]) or "",
                    customer_name=r.get(f["CUSTOMER_NAME"]) or "",
                    inspector=r.get(f["INSPECTOR_NAME"]) or "",
                    total_issues=str(r.get(f["TOTAL_ISSUES"]) or "0"),
                )
                for r in result.get("results", [])
            ]
        except (RemoteServiceError, KeyError, AttributeError) as exc:
            logger.error("Baserow list error: %s", exc)
            return {"success": False, "error": "Failed to list inspections", "inspections": []}
        return {"success": True, "inspections": inspections}

    def delete(self, row_id: int) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": TOKEN_MISSING}
        try:
            self._request("DELETE", self._rows_url(row_id))
        except RemoteServiceError as exc:
            logger.error("Baserow delete error: %s", exc)
            return {"success": False, "error": "Failed to delete"}
        logger.info("Inspection deleted from Baserow: %s", row_id)
        return {"success": True, "message": "Deleted"}
