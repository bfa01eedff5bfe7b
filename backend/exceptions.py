"""Exception classes shared by the report backend."""

from typing import List, Optional


class RoofReportError(Exception):
    """Base exception for all application errors."""

    pass


class ConfigurationError(RoofReportError):
    """Raised when an API key, token or SMTP credential is missing."""

    pass


class RemoteServiceError(RoofReportError):
    """Raised when an external HTTP service answers with an error or bad JSON."""

    pass


class TranslationError(RemoteServiceError):
    """Raised when the translation call fails; the caller must not store text."""

    pass


class ReportValidationError(RoofReportError):
    """Raised when a required field is empty or malformed."""

    pass


class LanguageGateError(ReportValidationError):
    """Raised when report text still contains Spanish."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class LocalInputError(RoofReportError):
    """Raised for unreadable audio or image input."""

    pass
