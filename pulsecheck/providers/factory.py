import os
from typing import Optional

from .base import CoachingLLMClient, SpeechClient, TranscriptionSentimentProvider
from .mock import FallbackTranscriptionProvider, MockCoachingLLMClient, MockSpeechClient


def _env_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def get_transcription_provider(provider: Optional[str] = None) -> TranscriptionSentimentProvider:
    """Return the primary transcription/sentiment provider.

    Env precedence:
      - AI_PROVIDER_TRANSCRIBE
      - AI_PROVIDER
      - defaults to 'mock'
    """
    prov = (provider or _env_str("AI_PROVIDER_TRANSCRIBE") or _env_str("AI_PROVIDER") or "mock").lower()

    if prov in ("assemblyai", "assembly"):
        try:
            from .assemblyai import AssemblyAIProvider  # type: ignore
            return AssemblyAIProvider()
        except Exception:
            # Fallback to mock if provider keys not available
            return FallbackTranscriptionProvider()

    return FallbackTranscriptionProvider()


def get_fallback_provider() -> TranscriptionSentimentProvider:
    return FallbackTranscriptionProvider()


def get_coaching_llm_client(provider: Optional[str] = None, model: Optional[str] = None) -> CoachingLLMClient:
    prov = (provider or _env_str("AI_PROVIDER_COACHING") or _env_str("AI_PROVIDER") or "mock").lower()
    mdl = model or _env_str("AI_COACHING_MODEL") or None

    if prov in ("mock", "test"):
        return MockCoachingLLMClient(model=mdl)

    if prov in ("openrouter", "router"):
        try:
            from .openrouter import OpenRouterCoachingClient  # type: ignore
            return OpenRouterCoachingClient(model=mdl)
        except Exception:
            return MockCoachingLLMClient(model=mdl)

    # Unknown -> mock
    return MockCoachingLLMClient(model=mdl)


def get_speech_client(provider: Optional[str] = None) -> SpeechClient:
    prov = (provider or _env_str("AI_PROVIDER_TTS") or _env_str("AI_PROVIDER") or "mock").lower()

    if prov in ("google", "gcp"):
        try:
            from .google import GoogleSpeechClient  # type: ignore
            return GoogleSpeechClient()
        except Exception:
            return MockSpeechClient()

    return MockSpeechClient()
