from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from ..models import UnifiedResult


class TranscriptionSentimentProvider(abc.ABC):
    """Speech-to-text plus aggregate sentiment in one call.

    Implementations raise `ProviderError` when no usable transcript could be
    produced.
    """

    provider_name: str = "unknown"

    @abc.abstractmethod
    async def transcribe_with_sentiment(self, audio_path: str) -> UnifiedResult:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.provider_name, "features": ["transcription", "sentiment_analysis"]}


class CoachingLLMClient(abc.ABC):
    """Single-shot completion client used by optimized coaching.

    Returns the raw message text; callers own JSON parsing.
    """

    provider_name: str = "unknown"

    def __init__(self, model: Optional[str] = None):
        self.model = model

    @abc.abstractmethod
    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 200,
    ) -> str:
        ...


class SpeechClient(abc.ABC):
    """Text-to-speech client returning encoded audio bytes (possibly empty)."""

    provider_name: str = "unknown"

    def __init__(self, voice_config: Optional[Dict[str, Any]] = None):
        self.voice_config: Dict[str, Any] = dict(voice_config or DEFAULT_VOICE_CONFIG)

    @abc.abstractmethod
    async def synthesize(self, text: str) -> bytes:
        ...


DEFAULT_VOICE_CONFIG: Dict[str, Any] = {
    "languageCode": "en-US",
    "voiceName": "en-US-Standard-C",
    "ssmlGender": "FEMALE",
}
