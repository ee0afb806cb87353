import os
from typing import Optional

import httpx

from .base import CoachingLLMClient


class OpenRouterCoachingClient(CoachingLLMClient):
    provider_name: str = "openrouter"

    def __init__(self, model: Optional[str] = None):
        super().__init__(model=model or os.getenv("AI_COACHING_MODEL") or "openai/gpt-4o-mini")
        api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
        if not api_key:
            raise RuntimeError("OPENROUTER_API_KEY is required for OpenRouter provider")
        self._api_key = api_key
        # Default 30s; can override via AI_HTTP_TIMEOUT_SECONDS or OPENROUTER_TIMEOUT_SECONDS
        try:
            self._timeout = float(os.getenv("OPENROUTER_TIMEOUT_SECONDS") or os.getenv("AI_HTTP_TIMEOUT_SECONDS") or 30)
        except Exception:
            self._timeout = 30.0
        # Origin metadata (optional but recommended by OpenRouter)
        self._referer = os.getenv("PUBLIC_APP_ORIGIN", "http://localhost:3000").strip() or "http://localhost:3000"
        self._title = os.getenv("OPENROUTER_APP_TITLE", "PulseCheck API").strip() or "PulseCheck API"

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 200,
    ) -> str:
        url = "https://openrouter.ai/api/v1/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": "pulsecheck-api/0.1.0",
            "HTTP-Referer": self._referer,
            "X-Title": self._title,
        }
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            # Prefer JSON if model supports it; benign for others
            "response_format": {"type": "json_object"},
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(url, headers=headers, json=payload)
            if resp.status_code >= 400:
                # Raise to let caller handle fallback
                raise RuntimeError(f"OpenRouter error {resp.status_code}: {resp.text}")
            data = resp.json()
        msg = (((data or {}).get("choices") or [{}])[0].get("message") or {})
        return (msg.get("content") or "").strip()
