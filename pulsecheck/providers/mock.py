import asyncio
import json
import random
import time
from typing import Any, Dict, Optional

from ..errors import ProviderError
from ..models import SentimentLabel, SentimentResult, UnifiedResult
from .base import CoachingLLMClient, SpeechClient, TranscriptionSentimentProvider


MOCK_TRANSCRIPTS = [
    "I've been feeling a bit stressed lately with all the assignments and exams coming up.",
    "Today was actually pretty good! I managed to finish my project and felt accomplished.",
    "I'm struggling with anxiety about my future career and whether I'm making the right choices.",
    "Had a rough day today. Feeling overwhelmed with everything on my plate.",
    "Feeling grateful for my friends and family. They've been really supportive lately.",
    "I've been having trouble sleeping because my mind keeps racing about deadlines.",
    "Things are going okay, just taking it one day at a time.",
    "I feel excited about the new semester starting and the opportunities ahead.",
]

POSITIVE_KEYWORDS = ("good", "great", "happy", "excited", "accomplished", "grateful", "supportive")
NEGATIVE_KEYWORDS = ("stressed", "anxiety", "struggling", "rough", "overwhelmed", "trouble", "worried")


def keyword_sentiment(transcript: str, rng: Optional[random.Random] = None) -> SentimentResult:
    """Lexical heuristic: label from keyword counts, score drawn inside the label's band."""
    rng = rng or random.Random()
    text = (transcript or "").lower()
    pos = sum(1 for w in POSITIVE_KEYWORDS if w in text)
    neg = sum(1 for w in NEGATIVE_KEYWORDS if w in text)
    if pos > neg:
        label = SentimentLabel.POSITIVE
        score = rng.uniform(0.7, 1.0)
    elif neg > pos:
        label = SentimentLabel.NEGATIVE
        score = rng.uniform(0.1, 0.4)
    else:
        label = SentimentLabel.NEUTRAL
        score = rng.uniform(0.4, 0.6)
    confidence = rng.uniform(0.8, 1.0)
    return SentimentResult(score=round(score, 2), label=label, confidence=round(confidence, 2))


class FallbackTranscriptionProvider(TranscriptionSentimentProvider):
    """Stand-in used when the primary provider fails.

    Picks a templated check-in transcript and scores it with the keyword
    heuristic, so downstream stages see the same result shape.
    """

    provider_name: str = "fallback"

    def __init__(self, rng: Optional[random.Random] = None, simulated_latency_s: float = 0.0):
        self._rng = rng or random.Random()
        self._latency = max(0.0, simulated_latency_s)

    async def transcribe_with_sentiment(self, audio_path: str) -> UnifiedResult:
        start = time.perf_counter()
        if self._latency:
            await asyncio.sleep(self._latency)
        transcript = self._rng.choice(MOCK_TRANSCRIPTS)
        if not transcript.strip():
            raise ProviderError("Fallback provider produced an empty transcript")
        sentiment = keyword_sentiment(transcript, self._rng)
        confidence = round(self._rng.uniform(0.7, 1.0), 2)
        return UnifiedResult(
            transcript=transcript,
            confidence=confidence,
            sentiment=sentiment,
            processing_time=int((time.perf_counter() - start) * 1000),
        )

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.provider_name, "features": ["templated_transcription", "keyword_sentiment"]}


class MockCoachingLLMClient(CoachingLLMClient):
    provider_name: str = "mock"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or "mock-coach-1")

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 200,
    ) -> str:
        # Deterministic placeholder keyed off the sentiment line of the prompt
        first = (prompt or "").splitlines()[0].lower() if prompt else ""
        if "negative" in first:
            msg = "You showed up for yourself today, and that matters. Take this one small step at a time."
        elif "positive" in first:
            msg = "Your energy today is worth holding on to. Notice what helped and keep it close."
        else:
            msg = "Checking in with yourself is a steady habit. Give yourself a calm minute before moving on."
        return json.dumps({
            "motivationalMessage": msg,
            "breathingTip": "Breathe in for 4 counts, hold for 4, and exhale for 6.",
            "stretchTip": "Roll your shoulders back slowly five times.",
        })


class MockSpeechClient(SpeechClient):
    provider_name: str = "mock"

    async def synthesize(self, text: str) -> bytes:
        if not (text or "").strip():
            return b""
        # ID3 header followed by padding proportional to the text length
        return b"ID3\x03\x00\x00\x00\x00\x00\x00" + b"\x00" * (len(text) * 64)
