"""PulseCheck check-in service.

Modules:
- cache: content-addressed transcription cache
- providers: transcription/sentiment, coaching LLM and TTS vendor clients
- coaching: fast and LLM-backed coaching generation with crisis override
- speech: TTS file lifecycle per session
- stores: anonymized sentiment log and coaching-session records
- scheduler: periodic cleanup and retention
- orchestrator: the per-request check-in pipeline
"""

__version__ = "0.1.0"
