import base64
import json
import os
from typing import Any, Dict, Optional

import httpx

from ..logs import get_logger
from .base import SpeechClient


class GoogleSpeechClient(SpeechClient):
    """Google Cloud Text-to-Speech over REST.

    Endpoint: POST https://texttospeech.googleapis.com/v1/text:synthesize?key=API_KEY
    Docs: https://cloud.google.com/text-to-speech/docs/reference/rest/v1/text/synthesize
    """

    provider_name: str = "google"

    def __init__(self, voice_config: Optional[Dict[str, Any]] = None):
        super().__init__(voice_config=voice_config)
        api_key = os.getenv("GOOGLE_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("GOOGLE_API_KEY is required for Google provider")
        self._api_key = api_key
        try:
            self._timeout = float(os.getenv("GOOGLE_TTS_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0

    async def synthesize(self, text: str) -> bytes:
        url = f"https://texttospeech.googleapis.com/v1/text:synthesize?key={self._api_key}"
        payload = {
            "input": {"text": text},
            "voice": {
                "languageCode": self.voice_config.get("languageCode", "en-US"),
                "name": self.voice_config.get("voiceName"),
                "ssmlGender": self.voice_config.get("ssmlGender", "FEMALE"),
            },
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": 1.0,
                "pitch": 0.0,
                "volumeGainDb": 0.0,
            },
        }
        logger = get_logger("pulsecheck.providers.google")
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, headers={"Content-Type": "application/json"}, json=payload)
            if resp.status_code >= 400:
                try:
                    logger.error(json.dumps({
                        "event": "google_tts_http_error",
                        "status": resp.status_code,
                        "body": resp.text[:512],
                    }))
                except Exception:
                    pass
                raise RuntimeError(f"Google TTS error {resp.status_code}")
            data = resp.json() or {}
        content = data.get("audioContent") or ""
        if not content:
            return b""
        return base64.b64decode(content)
