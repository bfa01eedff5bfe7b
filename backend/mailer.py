import logging
import smtplib
import ssl
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from html import escape
from typing import Any, Dict, List, Optional

import settings
from baserow_store import is_valid_email

logger = logging.getLogger(__name__)


def split_addresses(raw: str) -> List[str]:
    return [a.strip() for a in (raw or "").split(",") if a.strip()]


class ReportMailer:
    """Sends the finished report over SMTP with implicit TLS."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender_name: Optional[str] = None,
        smtp_factory=smtplib.SMTP_SSL,
    ):
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.sender_name = sender_name or settings.COMPANY_NAME
        self.smtp_factory = smtp_factory

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def build_message(
        self,
        to: List[str],
        cc: List[str],
        subject: str,
        body: str,
        pdf_bytes: bytes,
        pdf_filename: str,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["From"] = formataddr((self.sender_name, self.user))
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()

        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(body, "plain", "utf-8"))
        alternative.attach(MIMEText(escape(body).replace("\n", "<br>"), "html", "utf-8"))
        msg.attach(alternative)

        attachment = MIMEApplication(pdf_bytes, _subtype="pdf")
        attachment.add_header("Content-Disposition", "attachment", filename=pdf_filename)
        msg.attach(attachment)
        return msg

    def send_report_email(
        self,
        to: List[str],
        subject: str,
        body: str,
        pdf_bytes: bytes,
        pdf_filename: str,
        cc: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": "Email configuration missing"}
        if not pdf_bytes:
            return {"success": False, "error": "PDF is empty"}

        to = [a.strip() for a in to if a and a.strip()]
        cc = [a.strip() for a in (cc or []) if a and a.strip()]
        if not to:
            return {"success": False, "error": "Enter recipient email"}
        invalid = [a for a in to + cc if not is_valid_email(a)]
        if invalid:
            return {"success": False, "error": f"Invalid emails: {', '.join(invalid)}"}

        msg = self.build_message(to, cc, subject, body, pdf_bytes, pdf_filename)

        try:
            with self.smtp_factory(self.host, self.port, context=ssl.create_default_context()) as server:
                server.login(self.user, self.password)
                code, _ = server.noop()
                if code != 250:
                    raise smtplib.SMTPException(f"SMTP server not ready (NOOP returned {code})")
                server.send_message(msg, from_addr=self.user, to_addrs=to + cc)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email error: %s", exc)
            return {"success": False, "error": "Failed to send email"}

        logger.info("Email sent successfully: %s", msg["Message-ID"])
        return {"success": True, "message_id": msg["Message-ID"]}
