import base64
import logging
import re
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional

from openai import APIStatusError, OpenAI, OpenAIError

import settings
from exceptions import TranslationError
from models import Severity, URGENT_SEVERITIES

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "OpenAI API key not configured"

ENGLISH_ONLY = (
    "CRITICAL REQUIREMENT: Write EXCLUSIVELY in English. Do NOT use any Spanish words, "
    "phrases, or terminology under any circumstances. The reader only understands English."
)

FINAL_NOTES_HEADERS = (
    "TECHNICAL ROOF CONDITION ASSESSMENT",
    "FINDINGS:",
    "RECOMMENDATIONS:",
)

TRANSLATOR_SYSTEM_PROMPT = """You are a professional translator specializing in roofing industry terminology.

CRITICAL RULES:
1. Translate ANY Spanish text to English
2. Use proper technical roofing terms in English
3. Output ONLY the English translation - no explanations
4. If input is already in English, return it unchanged
5. NEVER include Spanish words in your output
6. Common Spanish roofing terms:
   - tapajunta/tapa junta = ridge cap
   - tejas = shingles
   - canaleta = gutter
   - bajante = downspout
   - chimenea = chimney
   - goteras = leaks
   - humedad = moisture
   - moho = mold
   - inexistente = missing
   - dañado = damaged
   - roto = broken
   - corrosión = corrosion
   - oxidado = rusted
   - agrietado = cracked
   - deteriorado = deteriorated
   - desprendido = detached
   - suelto = loose"""

STRICT_TRANSLATOR_SYSTEM_PROMPT = (
    "You MUST translate to English. NO Spanish words allowed in output. "
    "Roofing terminology translator."
)


# ===================== Response parsing =====================

_TITLE_RE = re.compile(
    r"TITLE:\s*(.+?)(?=\n\s*\n|\n\s*OBSERVED CONDITION:|OBSERVED CONDITION:|$)",
    re.IGNORECASE | re.DOTALL,
)
_TITLE_BLOCK_RE = re.compile(
    r"TITLE:\s*.+?(?=OBSERVED CONDITION:|POTENTIAL IMPACT IF UNADDRESSED:|\n\s*\n|$)",
    re.IGNORECASE | re.DOTALL,
)


def parse_title_and_description(full_text: str) -> Dict[str, str]:
    """Split a TITLE / OBSERVED CONDITION / POTENTIAL IMPACT response."""
    full_text = (full_text or "").replace("**", "").strip()

    match = _TITLE_RE.search(full_text)
    title = re.sub(r"\s+", " ", match.group(1)).strip() if match else ""

    description = _TITLE_BLOCK_RE.sub("", full_text, count=1)
    description = re.sub(r"observed condition:", "OBSERVED CONDITION:", description, flags=re.IGNORECASE)
    description = re.sub(
        r"potential impact if unaddressed:",
        "POTENTIAL IMPACT IF UNADDRESSED:",
        description,
        flags=re.IGNORECASE,
    )
    paragraphs = [
        re.sub(r"[ \t]+", " ", p).strip()
        for p in re.split(r"\n\s*\n", description)
        if p.strip()
    ]
    description = "\n\n".join(paragraphs)
    description = re.sub(r"\n(?=POTENTIAL IMPACT)", "\n\n", description)
    description = re.sub(r"\n{3,}", "\n\n", description).strip()
    return {"title": title, "description": description}


def strip_markdown_emphasis(text: str) -> str:
    return (text or "").replace("**", "").replace("*", "").strip()


def count_severities(sections: Iterable[Any]) -> Dict[str, int]:
    counts = {s.value: 0 for s in Severity}
    for section in sections:
        counts[Severity(section.severity).value] += 1
    return counts


def count_urgent(sections: Iterable[Any]) -> int:
    return sum(1 for s in sections if Severity(s.severity) in URGENT_SEVERITIES)


def display_date(value: str) -> str:
    """ISO dates become MM/DD/YYYY; anything else is returned unchanged."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").strftime("%m/%d/%Y")
    except (TypeError, ValueError):
        return value or ""


def _error_message(exc: Exception) -> str:
    if isinstance(exc, APIStatusError):
        body = exc.body if isinstance(exc.body, dict) else {}
        nested = body.get("error", body) if isinstance(body, dict) else {}
        if isinstance(nested, dict) and nested.get("message"):
            return str(nested["message"])
        return exc.message
    return str(exc)


# ===================== Fallback email =====================

def fallback_email(
    customer_name: str,
    address: str,
    date: str,
    estimator: str,
    sections: List[Any],
    final_notes: str,
) -> Dict[str, Any]:
    """Deterministic email body with the same inputs as the AI path."""
    urgent = count_urgent(sections)
    is_replacement = re.search(r"replacement", final_notes or "", re.IGNORECASE) is not None
    action_text = "replacement consultation" if is_replacement else "repair estimate"
    urgent_text = f", including {urgent} urgent issues" if urgent else ""

    body = f"""Dear {customer_name or "Valued Customer"},

Thank you for choosing {settings.COMPANY_NAME} for your roof inspection at {address}. Your detailed inspection report is attached.

Our inspector identified {len(sections)} items requiring attention{urgent_text}. Based on our findings, we recommend scheduling a {action_text} to address these concerns and protect your property.

Why choose {settings.COMPANY_NAME}:
- Licensed ({settings.COMPANY_LICENSE}), Bonded & Insured
- 500+ Roofs Completed Since 2019
- Bay Area's Trusted Roofing Experts
- Transparent Pricing & Drone Technology

Please contact us to discuss the findings and next steps:
Phone: {settings.COMPANY_PHONE}
Email: {settings.COMPANY_EMAIL}

Best regards,
{estimator}
{settings.COMPANY_NAME}
{settings.COMPANY_CITY}
{settings.COMPANY_EMAIL}"""

    return {
        "success": True,
        "subject": f"Roof Inspection Report - {address}",
        "body": body,
        "action_text": action_text,
        "fallback": True,
    }


# ===================== OpenAI client =====================

class RoofingAI:
    """Text generation, translation and transcription through the OpenAI API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transcribe_model: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.OPENAI_API_KEY).strip()
        self.model = model or settings.OPENAI_MODEL
        self.transcribe_model = transcribe_model or settings.TRANSCRIBE_MODEL
        if client is not None:
            self.client = client
        else:
            self.client = OpenAI(api_key=self.api_key) if self.api_key else None

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> str:
        completion = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not completion.choices:
            logger.warning("OpenAI returned no choices")
            return ""
        return (completion.choices[0].message.content or "").strip()

    # ---------- issue -> title + description ----------

    def generate_description(self, issue: str, severity: Severity) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": NOT_CONFIGURED}
        if not (issue or "").strip():
            return {"success": False, "error": "Please enter an issue first"}

        severity = Severity(severity).value
        prompt = f"""You are a professional roofing inspector. Based on this roofing issue, generate BOTH a professional title and a technical description.

Issue ({severity} severity): {issue}

{ENGLISH_ONLY}

FORMAT YOUR RESPONSE EXACTLY LIKE THIS:

TITLE:
[Write a concise, professional title for this issue. 5-10 words maximum. Use Title Case. Be specific and clear.]

OBSERVED CONDITION:
[Precise technical observation in English. 2-3 sentences.]

POTENTIAL IMPACT IF UNADDRESSED:
[Clear explanation of consequences in English. 2-3 sentences.]

Use professional roofing terminology in English only. No markdown. Each section must be its own paragraph separated by a blank line."""

        try:
            full_text = self._complete(
                [{"role": "user", "content": prompt}], max_tokens=300, temperature=0.7
            )
        except APIStatusError as exc:
            logger.error("Description generation error: %s", exc)
            return {"success": False, "error": f"AI error: {_error_message(exc)}"}
        except OpenAIError as exc:
            logger.error("Description generation error: %s", exc)
            return {"success": False, "error": "Failed to generate description"}

        parsed = parse_title_and_description(full_text)
        if not parsed["description"]:
            return {"success": False, "error": "Failed to generate description"}
        return {
            "success": True,
            "title": parsed["title"] or issue.strip(),
            "description": parsed["description"],
        }

    # ---------- field notes -> final report ----------

    def generate_final_notes(
        self,
        sections: List[Any],
        address: str,
        inspector: str,
        inspector_field_notes: str,
    ) -> Dict[str, Any]:
        if not self.configured:
            return {"success": False, "error": NOT_CONFIGURED}
        if not sections:
            return {"success": False, "error": "Add at least one section first"}
        if not (inspector_field_notes or "").strip():
            return {"success": False, "error": "Please enter your field notes first"}

        counts = count_severities(sections)
        total = len(sections)
        prompt = f"""
You are a senior roofing inspector for {settings.COMPANY_NAME} synthesizing a comprehensive final report.

{ENGLISH_ONLY}

PROPERTY: {address}
INSPECTOR: {inspector}

INSPECTION SUMMARY:
  - Total Issues Found: {total}
  - Critical Severity: {counts["Critical"]}
  - High Severity: {counts["High"]}
  - Medium Severity: {counts["Medium"]}
  - Low Severity: {counts["Low"]}

INSPECTOR'S FIELD NOTES:
{inspector_field_notes}

YOUR TASK:
Synthesize a comprehensive final report that combines the inspector's field observations with the documented findings. The report should be informed by and supportive of the inspector's professional assessment.

STRICT FORMAT INSTRUCTIONS:
You must write EXACTLY THREE SECTIONS in this exact format. Do NOT add any other sections or text outside these three sections.

Do NOT use markdown bold symbols (**). Write section headers in ALL CAPS followed by a colon.

SECTION 1 - Header must be exactly: {FINAL_NOTES_HEADERS[0]}
[Synthesize a 2-3 sentence professional assessment that reflects the inspector's field notes while incorporating the {total} documented issues. Reference the severity breakdown naturally.]

SECTION 2 - Header must be exactly: {FINAL_NOTES_HEADERS[1]}
[Synthesize the key findings by incorporating BOTH the inspector's observations AND the documented issues organized by severity (Critical, High, Medium, Low). 3-4 sentences maximum.]

SECTION 3 - Header must be exactly: {FINAL_NOTES_HEADERS[2]}
[Provide clear, actionable recommendations that align with the inspector's field notes while addressing the documented issues by priority. Include timeline urgency for critical/high items. 3-4 sentences maximum.]

RULES:
- Synthesize content from BOTH the inspector's field notes AND the documented findings
- Do NOT simply copy the field notes - enhance and support them with the findings data
- Do NOT use any markdown symbols (**, *, etc.)
- Do NOT add any other sections
- Do NOT add contact information, signatures, or closing statements
- Write ONLY in English
- Keep total response under 400 words
- Use plain text with section headers in ALL CAPS
"""

        try:
            notes = self._complete(
                [{"role": "user", "content": prompt}], max_tokens=600, temperature=0.7
            )
        except APIStatusError as exc:
            logger.error("Final notes generation error: %s", exc)
            return {"success": False, "error": f"AI error: {_error_message(exc)}"}
        except OpenAIError as exc:
            logger.error("Final notes error: %s", exc)
            return {"success": False, "error": "Failed to generate final notes"}

        return {"success": True, "final_notes": strip_markdown_emphasis(notes)}

    # ---------- follow-up email ----------

    def generate_email_content(
        self,
        customer_name: str,
        address: str,
        date: str,
        inspector: str,
        estimator: str,
        sections: List[Any],
        final_notes: str,
    ) -> Dict[str, Any]:
        date = display_date(date)
        if not self.configured:
            logger.warning("OpenAI API key missing for email generation")
            return fallback_email(customer_name, address, date, estimator, sections, final_notes)

        urgent = count_urgent(sections)
        prompt = f"""
You are writing a professional follow-up email for {settings.COMPANY_NAME} after a roof inspection.

CRITICAL REQUIREMENT: Write EXCLUSIVELY in English. Do NOT use any Spanish words, phrases, or terminology under any circumstances.

INSPECTION DETAILS:
- Customer: {customer_name or "Valued Customer"}
- Property: {address}
- Date: {date}
- Inspector: {inspector}
- Total Findings: {len(sections)}
- Critical/High Issues: {urgent}

FINAL INSPECTION REPORT RECOMMENDATIONS:
{final_notes}

YOUR TASK:
Write a professional email that ALIGNS with the final inspection report recommendations above.

CRITICAL RULES:
1. Read the RECOMMENDATIONS section of the final notes carefully
2. If it recommends REPLACEMENT, the email should mention "replacement" and urgency
3. If it recommends REPAIRS, the email should mention "repairs"
4. MATCH the urgency/timeline from the recommendations (e.g., "30-60 days", "immediate attention")
5. Your email CTA must ALIGN with the report's recommendation

EMAIL STRUCTURE:
[Opening] Thank customer for choosing {settings.COMPANY_NAME}

[Summary] Briefly mention {len(sections)} findings with {urgent} requiring urgent attention

[Key Point] Reference the main recommendation from the inspection report (repair OR replacement - match the report exactly)

[Why us] Highlight:
- Licensed {settings.COMPANY_LICENSE}, Bonded & Insured
- 500+ Roofs Since 2019
- Bay Area's Trusted Experts
- Transparent Pricing & Drone Technology

[Call to Action] Invite them to schedule a [repair estimate OR replacement consultation - match the recommendation]. Use the urgency level from the recommendations.

[Closing]
Contact: {settings.COMPANY_PHONE} or {settings.COMPANY_EMAIL}

Best regards,
{estimator}
{settings.COMPANY_NAME}
{settings.COMPANY_CITY}
{settings.COMPANY_EMAIL}

TONE: Professional, helpful, expert, trustworthy. No jargon.
LENGTH: 180-220 words
OUTPUT: Write ONLY in English. Return ONLY the email body (no subject line).
"""

        try:
            body = self._complete(
                [{"role": "user", "content": prompt}], max_tokens=350, temperature=0.7
            )
        except OpenAIError as exc:
            logger.error("Email generation error: %s", exc)
            return fallback_email(customer_name, address, date, estimator, sections, final_notes)

        if not body:
            return fallback_email(customer_name, address, date, estimator, sections, final_notes)

        return {
            "success": True,
            "subject": f"Roof Inspection Report - {address} - {date}",
            "body": body,
            "fallback": False,
        }

    # ---------- translation (language gate) ----------

    def translate(self, text: str, strict: bool = False) -> str:
        if not self.configured:
            raise TranslationError("Translation requires OpenAI API key")

        if strict:
            messages = [
                {"role": "system", "content": STRICT_TRANSLATOR_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        "This text still has Spanish words. Translate EVERYTHING to English:"
                        f"\n\n{text}\n\nOutput ONLY pure English, no Spanish whatsoever."
                    ),
                },
            ]
            temperature = 0.1
        else:
            messages = [
                {"role": "system", "content": TRANSLATOR_SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ]
            temperature = 0.2

        try:
            return self._complete(messages, max_tokens=200, temperature=temperature)
        except OpenAIError as exc:
            logger.error("Translation error: %s", exc)
            raise TranslationError(f"OpenAI API error: {_error_message(exc)}") from exc

    # ---------- speech to text ----------

    def transcribe_audio(
        self,
        audio: Any,
        language: str = "es",
        filename: str = "audio.webm",
        content_type: str = "audio/webm",
    ) -> Dict[str, Any]:
        """``audio`` is raw bytes or a (data URL) base64 string."""
        if not self.configured:
            logger.error("OpenAI API key not configured")
            return {"success": False, "error": NOT_CONFIGURED}

        try:
            audio_bytes = decode_audio(audio)
        except ValueError as exc:
            return {"success": False, "error": str(exc)}

        logger.info("Transcribing audio (language: %s, size: %d bytes)", language, len(audio_bytes))
        f = BytesIO(audio_bytes)
        f.name = filename

        try:
            transcription = self.client.audio.transcriptions.create(
                model=self.transcribe_model,
                file=(filename, f, content_type),
                language=language,
                temperature=0,
            )
        except APIStatusError as exc:
            logger.error("Transcription API error: %s", exc)
            return {"success": False, "error": f"Transcription failed: {_error_message(exc)}"}
        except OpenAIError as exc:
            logger.error("Transcription error: %s", exc)
            return {"success": False, "error": "Audio transcription failed"}

        transcript = (getattr(transcription, "text", "") or "").strip()
        if not transcript:
            return {"success": False, "error": "Transcription returned no text. Please record again."}
        logger.info("Transcription successful: %s...", transcript[:50])
        return {"success": True, "transcript": transcript}


def decode_audio(audio: Any) -> bytes:
    if isinstance(audio, (bytes, bytearray)):
        data = bytes(audio)
    else:
        text = str(audio or "")
        if "," in text:
            text = text.split(",", 1)[1]
        try:
            data = base64.b64decode(text, validate=True)
        except (ValueError, TypeError) as exc:
            raise ValueError("Unreadable audio data") from exc
    if not data:
        raise ValueError("Audio recording is empty")
    return data
