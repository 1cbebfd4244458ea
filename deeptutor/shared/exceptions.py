"""
Exception hierarchy for DeepTutor.
"""

import asyncio
from typing import Optional


class DeepTutorError(Exception):
    """Base exception for all DeepTutor errors."""
    pass


class GatewayError(DeepTutorError):
    """Base exception for generation gateway errors."""
    pass


class CredentialMissing(GatewayError):
    """Raised before any network call when no backend credential is configured."""
    pass


class GatewayTimeout(GatewayError):
    """Raised when a backend or proxy call exceeds its timeout."""
    pass


class ProxyUnavailable(GatewayError):
    """Raised when the proxy endpoint is missing or unreachable."""
    pass


class MalformedResponse(GatewayError):
    """Raised when a structured response could not be recovered as JSON."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class BackendRejected(GatewayError):
    """Raised when the backend (or proxy) answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AttachmentError(DeepTutorError):
    """Raised when an attachment source cannot be read."""
    pass


class SynthesisError(DeepTutorError):
    """Raised when a usable curriculum could not be derived from a response."""
    pass


class WorkspaceNotFoundError(DeepTutorError):
    """Raised when a workspace id is unknown to the store."""
    pass


class SectionNotFoundError(DeepTutorError):
    """Raised when a section id or index does not exist in a workspace."""
    pass


class ItemNotFoundError(DeepTutorError):
    """Raised when a flashcard or practice question id does not exist in a section."""
    pass


class WorkspaceUpdateError(DeepTutorError):
    """Raised when a partial update names fields a workspace does not have."""
    pass


CREDENTIAL_REMEDIATION = (
    "No backend API key is configured. Set GEMINI_API_KEY (or the key for the "
    "configured BACKEND_PROVIDER) in the environment or .env file and try again."
)


def user_facing_message(error: BaseException) -> str:
    """Map any error to a message suitable for showing to the user."""
    if isinstance(error, CredentialMissing):
        return f"{error} {CREDENTIAL_REMEDIATION}" if str(error) else CREDENTIAL_REMEDIATION
    if isinstance(error, (GatewayTimeout, asyncio.TimeoutError)):
        return "The tutor engine took too long to respond. Please retry."
    if isinstance(error, ProxyUnavailable):
        return "Generation gateway not found. Ensure the proxy service is running."
    if isinstance(error, MalformedResponse):
        return "The tutor engine returned an unreadable response. Please retry."
    if isinstance(error, BackendRejected):
        detail = str(error) or f"HTTP {error.status_code}"
        return f"The tutor engine rejected the request: {detail}"
    if isinstance(error, AttachmentError):
        return f"The document could not be read: {error}"
    if isinstance(error, SynthesisError):
        return f"Could not build a curriculum from this document: {error}"
    return "Tutor engine interrupted. Please retry."
