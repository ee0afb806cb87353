from typing import Optional


class PulseCheckError(Exception):
    """Base class for check-in pipeline errors.

    `public_message` is what may be shown to a caller; `str(exc)` may carry
    upstream details and is only logged.
    """

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str = "", *, public_message: Optional[str] = None):
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class UploadError(PulseCheckError):
    """Missing, malformed or oversized upload. Surfaced verbatim."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, public_message=message)


class ProviderError(PulseCheckError):
    """Transcription/sentiment upstream failed after retries, or returned no text."""


class SynthesisError(PulseCheckError):
    """TTS upstream failed or returned no audio payload."""


class PersistenceError(PulseCheckError):
    """A best-effort database write or query failed."""


class InternalError(PulseCheckError):
    status_code = 500
    public_message = "Internal server error during audio processing"
