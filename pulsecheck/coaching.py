"""Coaching content generation.

Two strategies produce the same `CoachingResponse` shape:

- fast: label-keyed exercise templates plus resources and a message
  computed from (score, label, crisis). No network, fully deterministic.
- optimized: asks an LLM for a personalised message and short exercise
  tips, merged into the fast template. Any LLM or parse failure yields the
  fast response.

Crisis situations (score < 0.2 with a negative label) always use the fast
strategy.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .logs import get_logger, log_event
from .metrics import COACHING_LLM_FAILURES_TOTAL, COACHING_TOTAL
from .models import (
    BreathingExercise,
    CoachingMode,
    CoachingResponse,
    Resource,
    ResourceCategory,
    SentimentLabel,
    SentimentResult,
    StretchExercise,
)
from .providers.base import CoachingLLMClient

logger = get_logger("pulsecheck.coaching")

CRISIS_SCORE_THRESHOLD = 0.2
PROMPT_TRANSCRIPT_CHARS = 150


def is_crisis(sentiment: SentimentResult) -> bool:
    return sentiment.score < CRISIS_SCORE_THRESHOLD and sentiment.label == SentimentLabel.NEGATIVE


@dataclass(frozen=True)
class CoachingTemplate:
    breathing: BreathingExercise
    stretch: StretchExercise


_TEMPLATES: Dict[SentimentLabel, CoachingTemplate] = {
    SentimentLabel.NEGATIVE: CoachingTemplate(
        breathing=BreathingExercise(
            title="5-Minute Stress Relief Breathing",
            instructions=[
                "Sit comfortably and close your eyes",
                "Breathe in slowly for 4 seconds",
                "Hold your breath for 7 seconds",
                "Exhale slowly for 8 seconds",
                "Repeat 4 times",
            ],
            duration=5,
        ),
        stretch=StretchExercise(
            title="Tension Relief Stretches",
            instructions=[
                "Slowly roll your neck and shoulders",
                "Stretch your arms up and down",
                "Take deep breaths and release tension",
            ],
        ),
    ),
    SentimentLabel.NEUTRAL: CoachingTemplate(
        breathing=BreathingExercise(
            title="Daily Management Breathing",
            instructions=[
                "Sit in a comfortable position",
                "Breathe in naturally",
                "Pause briefly and release tension",
                "Exhale slowly",
                "Repeat for 3 minutes",
            ],
            duration=3,
        ),
        stretch=StretchExercise(
            title="Energy Recharge Stretches",
            instructions=[
                "Turn your neck left and right",
                "Raise and lower your shoulders",
                "Stretch your arms to relax your body",
            ],
        ),
    ),
    SentimentLabel.POSITIVE: CoachingTemplate(
        breathing=BreathingExercise(
            title="Energy Maintenance Breathing",
            instructions=[
                "Take a deep breath",
                "Feel the positive energy",
                "Exhale slowly",
                "Maintain this good feeling",
                "Repeat for 2 minutes",
            ],
            duration=2,
        ),
        stretch=StretchExercise(
            title="Vitality Boost Stretches",
            instructions=[
                "Stretch your arms high up",
                "Lean your body left and right",
                "Feel the positive energy throughout your body",
            ],
        ),
    ),
}


def coaching_template(label: SentimentLabel) -> CoachingTemplate:
    return _TEMPLATES.get(label, _TEMPLATES[SentimentLabel.NEUTRAL])


# Curated resources
GET_HELP_NOW = Resource(
    title="Get Help Now: 988 Suicide & Crisis Lifeline",
    description="Free, confidential support 24/7. Call or text 988 to talk to someone right now.",
    url="tel:988",
    category=ResourceCategory.EMERGENCY,
)
CRISIS_TEXT_LINE = Resource(
    title="Crisis Text Line",
    description="Text HOME to 741741 to reach a trained crisis counselor.",
    url="sms:741741",
    category=ResourceCategory.EMERGENCY,
)
COUNSELING_CENTER = Resource(
    title="University Counseling Center",
    description="Free, confidential counseling services for students",
    url="https://counseling.university.edu",
    category=ResourceCategory.COUNSELING,
)
PEER_SUPPORT = Resource(
    title="Student Mental Health Support",
    description="Drop-in sessions and peer support groups on campus",
    url="https://wellness.university.edu/support",
    category=ResourceCategory.COUNSELING,
)
PREVENTIVE_CHECKIN = Resource(
    title="Wellness Check-in with a Counselor",
    description="A short preventive conversation to keep small stresses small",
    url="https://counseling.university.edu/wellness-checkin",
    category=ResourceCategory.COUNSELING,
)
STRESS_RELIEF_MEDITATION = Resource(
    title="Guided Stress Relief Meditation",
    description="Ten-minute guided sessions for calming an anxious mind",
    url="https://meditation.com/stress-relief",
    category=ResourceCategory.MEDITATION,
)
MINDFULNESS_MEDITATION = Resource(
    title="Mindfulness Meditation",
    description="Daily stress management through mindful breathing",
    url="https://meditation.com",
    category=ResourceCategory.MEDITATION,
)
BODY_SCAN = Resource(
    title="5-Minute Body Scan",
    description="Notice how you feel before the day gets busy",
    url="https://meditation.com/body-scan",
    category=ResourceCategory.MEDITATION,
)
ACHIEVEMENT_MAINTENANCE = Resource(
    title="Achievement Maintenance Tips",
    description="Ways to sustain a positive state",
    url="https://wellness.com",
    category=ResourceCategory.MEDITATION,
)
GRATITUDE_MEDITATION = Resource(
    title="Gratitude Meditation",
    description="Short guided practice to anchor what went well",
    url="https://meditation.com/gratitude",
    category=ResourceCategory.MEDITATION,
)
HABIT_MEDITATION = Resource(
    title="Mindful Habit Building",
    description="Turn today's good routines into lasting habits",
    url="https://meditation.com/habits",
    category=ResourceCategory.MEDITATION,
)

COUNSELING_RESOURCES: List[Resource] = [COUNSELING_CENTER, PEER_SUPPORT, PREVENTIVE_CHECKIN]


def select_resources(score: float, label: Any, crisis: bool) -> List[Resource]:
    """Exactly three resources per branch; unknown labels get the counseling list."""
    if crisis:
        return [GET_HELP_NOW, CRISIS_TEXT_LINE, COUNSELING_CENTER]
    try:
        label = SentimentLabel(label)
    except ValueError:
        return list(COUNSELING_RESOURCES)
    if label == SentimentLabel.NEGATIVE:
        return [COUNSELING_CENTER, PEER_SUPPORT, STRESS_RELIEF_MEDITATION]
    if label == SentimentLabel.NEUTRAL:
        return [MINDFULNESS_MEDITATION, BODY_SCAN, PREVENTIVE_CHECKIN]
    return [ACHIEVEMENT_MAINTENANCE, GRATITUDE_MEDITATION, HABIT_MEDITATION]


CRISIS_MESSAGE = (
    "I'm really glad you reached out, and I'm concerned about how much you're carrying right now. "
    "You don't have to go through this alone. Please call or text 988 to talk with someone right now, "
    "or contact your local emergency services if you are in immediate danger."
)
HEAVY_NEGATIVE_MESSAGE = (
    "Thank you for sharing how you're feeling. It takes courage to acknowledge emotions this heavy. "
    "Talking with a counselor can help, and reaching out is a sign of strength."
)
LIGHT_NEGATIVE_MESSAGE = (
    "It's tough right now, but you've handled hard days before. "
    "Take it one step at a time and be gentle with yourself."
)
NEUTRAL_MESSAGE = (
    "Taking time to check in with yourself is a healthy habit. "
    "Noticing how you feel is the first step to taking care of it."
)
POSITIVE_MESSAGE = (
    "You're doing really well! Notice what helped you feel this way today, "
    "and keep that positive energy going."
)


def motivational_message(score: float, label: Any, crisis: bool) -> str:
    if crisis:
        return CRISIS_MESSAGE
    try:
        label = SentimentLabel(label)
    except ValueError:
        return NEUTRAL_MESSAGE
    if label == SentimentLabel.NEGATIVE:
        return HEAVY_NEGATIVE_MESSAGE if score < 0.3 else LIGHT_NEGATIVE_MESSAGE
    if label == SentimentLabel.NEUTRAL:
        return NEUTRAL_MESSAGE
    return POSITIVE_MESSAGE


def _tip_lines(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [ln.strip() for ln in value.splitlines() if ln.strip()]
    return []


def parse_llm_json(text: str) -> Dict[str, Any]:
    content = (text or "").strip()
    # Strip markdown JSON fences if present
    if content.startswith("```"):
        content = content.strip("`").strip()
        if content.lower().startswith("json"):
            content = content[4:].strip()
    obj = json.loads(content)
    if not isinstance(obj, dict):
        raise ValueError("LLM output is not a JSON object")
    return obj


SYSTEM_PROMPT = (
    "You are a warm, concise wellness coach for students. "
    "Reply with a single JSON object and nothing else."
)


def coerce_mode(mode: Any) -> CoachingMode:
    """Unknown or missing modes fall back to fast."""
    try:
        return CoachingMode(mode)
    except ValueError:
        return CoachingMode.FAST


class CoachingEngine:
    def __init__(
        self,
        llm_client: Optional[CoachingLLMClient] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 200,
    ):
        self.llm_client = llm_client
        self.temperature = temperature
        self.max_tokens = max_tokens

    def resolve_mode(self, sentiment: SentimentResult, requested: CoachingMode) -> CoachingMode:
        if is_crisis(sentiment):
            return CoachingMode.FAST
        return requested

    async def generate_coaching(
        self,
        sentiment: SentimentResult,
        transcript: str = "",
        mode: CoachingMode = CoachingMode.FAST,
    ) -> CoachingResponse:
        crisis = is_crisis(sentiment)
        requested = coerce_mode(mode)
        resolved = self.resolve_mode(sentiment, requested)
        start = time.perf_counter()
        if resolved == CoachingMode.OPTIMIZED:
            result = await self.generate_optimized_coaching(sentiment, transcript)
        else:
            result = self.generate_fast_coaching(sentiment)
        try:
            COACHING_TOTAL.labels(mode=resolved.value, crisis=str(crisis).lower()).inc()
        except Exception:
            pass
        log_event(
            logger,
            "coaching_generated",
            requestedMode=requested.value,
            mode=resolved.value,
            crisis=crisis,
            label=sentiment.label.value,
            elapsedMs=int((time.perf_counter() - start) * 1000),
        )
        return result

    def generate_fast_coaching(self, sentiment: SentimentResult) -> CoachingResponse:
        crisis = is_crisis(sentiment)
        template = coaching_template(sentiment.label)
        return CoachingResponse(
            breathing_exercise=template.breathing,
            stretch_exercise=template.stretch,
            resources=select_resources(sentiment.score, sentiment.label, crisis),
            motivational_message=motivational_message(sentiment.score, sentiment.label, crisis),
        )

    def build_prompt(self, sentiment: SentimentResult, transcript: str) -> str:
        snippet = (transcript or "")[:PROMPT_TRANSCRIPT_CHARS]
        return (
            f"Sentiment: {sentiment.label.value} ({sentiment.score:.2f})\n"
            f"Text: \"{snippet}\"\n\n"
            "Return JSON only:\n"
            "{\n"
            '  "motivationalMessage": "English encouragement message (1 sentence)",\n'
            '  "breathingTip": "breathing method (1 line)",\n'
            '  "stretchTip": "stretching (1 line)"\n'
            "}"
        )

    async def generate_optimized_coaching(self, sentiment: SentimentResult, transcript: str) -> CoachingResponse:
        base = self.generate_fast_coaching(sentiment)
        if is_crisis(sentiment) or self.llm_client is None:
            return base
        try:
            raw = await self.llm_client.complete(
                self.build_prompt(sentiment, transcript),
                system=SYSTEM_PROMPT,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            obj = parse_llm_json(raw)
        except Exception as e:
            try:
                COACHING_LLM_FAILURES_TOTAL.labels(reason=type(e).__name__).inc()
            except Exception:
                pass
            log_event(logger, "coaching_llm_fallback", error=type(e).__name__, detail=str(e)[:200])
            return base

        message = str(obj.get("motivationalMessage") or "").strip() or base.motivational_message
        breathing_lines = _tip_lines(obj.get("breathingTip"))
        stretch_lines = _tip_lines(obj.get("stretchTip"))
        return replace(
            base,
            breathing_exercise=replace(base.breathing_exercise, instructions=breathing_lines)
            if breathing_lines
            else base.breathing_exercise,
            stretch_exercise=replace(base.stretch_exercise, instructions=stretch_lines)
            if stretch_lines
            else base.stretch_exercise,
            motivational_message=message,
        )
