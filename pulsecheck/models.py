from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class CoachingMode(str, Enum):
    FAST = "fast"
    OPTIMIZED = "optimized"


class ResourceCategory(str, Enum):
    COUNSELING = "counseling"
    MEDITATION = "meditation"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class SentimentResult:
    score: float
    label: SentimentLabel
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "label": self.label.value, "confidence": self.confidence}


NEUTRAL_DEFAULT = SentimentResult(score=0.5, label=SentimentLabel.NEUTRAL, confidence=0.5)


@dataclass(frozen=True)
class UnifiedResult:
    """The cacheable unit: transcript plus its aggregate sentiment."""

    transcript: str
    confidence: float
    sentiment: SentimentResult
    processing_time: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transcript": self.transcript,
            "confidence": self.confidence,
            "sentiment": self.sentiment.to_dict(),
            "processingTime": self.processing_time,
        }


@dataclass(frozen=True)
class BreathingExercise:
    title: str
    instructions: List[str]
    duration: int

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "instructions": list(self.instructions), "duration": self.duration}


@dataclass(frozen=True)
class StretchExercise:
    title: str
    instructions: List[str]
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"title": self.title, "instructions": list(self.instructions)}
        if self.image_url:
            out["imageUrl"] = self.image_url
        return out


@dataclass(frozen=True)
class Resource:
    title: str
    description: str
    url: str
    category: ResourceCategory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "category": self.category.value,
        }


@dataclass(frozen=True)
class CoachingResponse:
    breathing_exercise: BreathingExercise
    stretch_exercise: StretchExercise
    resources: List[Resource]
    motivational_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "breathingExercise": self.breathing_exercise.to_dict(),
            "stretchExercise": self.stretch_exercise.to_dict(),
            "resources": [r.to_dict() for r in self.resources],
            "motivationalMessage": self.motivational_message,
        }


@dataclass(frozen=True)
class SpeechResult:
    audio_url: str
    audio_file_path: str
    duration: int
    file_size: int
    processing_time: int
    format: str = "mp3"

    def metadata(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "fileSize": self.file_size,
            "format": self.format,
            "processingTime": self.processing_time,
        }


@dataclass
class CoachingSessionRecord:
    session_id: str
    tts_text: str
    audio_url: Optional[str] = None
    audio_metadata: Optional[Dict[str, Any]] = None
    voice_config: Optional[Dict[str, Any]] = None
    processing_time: Optional[int] = None
    file_size: Optional[int] = None
    duration: Optional[int] = None
    cleanup: bool = False
    created_at: Optional[dt.datetime] = None
    expires_at: Optional[dt.datetime] = None
