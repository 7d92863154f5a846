"""Errors raised by the translation pipeline.

Every subclass of :class:`KreyolError` carries a message that can be shown to
the user as is.
"""

from __future__ import annotations


class KreyolError(RuntimeError):
    """Base class for failures that end a pipeline run."""


MISSING_CREDENTIALS_MESSAGE = (
    "Missing API credentials. Set GROQ_API_KEY, or OPENAI_API_KEY together with "
    "LLAMA_ENDPOINT_URL, in the environment or in ~/.kreyol/secrets.env."
)


class ConfigurationMissing(KreyolError):
    """No usable provider configuration; raised before any network call."""

    def __init__(self, message: str = MISSING_CREDENTIALS_MESSAGE) -> None:
        super().__init__(message)


class PermissionDenied(KreyolError):
    def __init__(self) -> None:
        super().__init__("Microphone access denied. Please enable it in Settings.")


class ProviderError(KreyolError):
    """Raised by translation providers."""


class InvalidCredential(ProviderError):
    def __init__(self) -> None:
        super().__init__("Invalid API key. Please check your API key.")


class TranscriptionFailed(ProviderError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Transcription failed: {detail}")


class TranslationFailed(ProviderError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Translation failed: {detail}")


class NetworkFailure(ProviderError):
    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Network error: {detail}")


class InvalidResponse(ProviderError):
    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        message = "Received invalid response from server"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
