import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiError(Exception):
    pass


class GeminiClient:
    """Thin wrapper over the Gemini generateContent REST endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: float = 30.0,
        http: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.http = http or httpx.Client(timeout=timeout)

    def generate(self, prompt: str, *, system: Optional[str] = None, json_mode: bool = False) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if json_mode:
            payload["generationConfig"]["responseMimeType"] = "application/json"

        url = f"{GEMINI_BASE_URL}/models/{self.model}:generateContent"
        try:
            r = self.http.post(
                url,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise GeminiError(f"Gemini request failed: {e}")

        if r.status_code >= 400:
            logger.error("Gemini API error (%d): %s", r.status_code, r.text[:500])
            raise GeminiError(f"Gemini API error ({r.status_code})")

        try:
            data = r.json()
        except ValueError:
            raise GeminiError("Gemini returned a non-JSON body")
        if not isinstance(data, dict):
            raise GeminiError("Gemini returned an unexpected response shape")

        text = ""
        for candidate in (data.get("candidates") or [])[:1]:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            for part in ((content if isinstance(content, dict) else {}).get("parts") or []):
                if isinstance(part, dict):
                    text += part.get("text", "")
        if not text.strip():
            raise GeminiError("Gemini returned an empty response")
        return text.strip()
