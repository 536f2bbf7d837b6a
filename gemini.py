"""Google Gemini REST client used by the assistant."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import requests

from config import Settings
from errors import LLMAPIError, LLMConfigError

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

REPHRASE_MESSAGE = "Desculpe, não consegui processar sua solicitação. Pode reformular?"

GENERATION_CONFIG = {
    "temperature": 0.3,
    "topK": 20,
    "topP": 0.8,
    "maxOutputTokens": 1024,
}

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


def _reject_constant(name: str):
    # NaN and Infinity are not JSON
    raise ValueError(f"invalid JSON constant {name}")


def clarification(message: str = REPHRASE_MESSAGE) -> Dict[str, Any]:
    return {"type": "clarification", "response": message}


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        settings = Settings.load()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def generate(self, prompt: str, as_json: bool = False):
        """
        Send ``prompt`` and return the completion text.

        With ``as_json`` the model is asked for ``application/json`` and the
        parsed object is returned; an unparsable completion degrades to a
        clarification payload instead of raising.
        """
        if not self.api_key:
            raise LLMConfigError("Gemini API key is not configured. Set GEMINI_API_KEY in .env")

        generation_config = dict(GENERATION_CONFIG)
        if as_json:
            generation_config["responseMimeType"] = "application/json"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        }

        url = f"{API_BASE}/{self.model}:generateContent"
        try:
            resp = self.session.post(
                url,
                params={"key": self.api_key},
                json=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            raise LLMAPIError(f"Gemini request failed: {err}") from err

        if not 200 <= resp.status_code < 300:
            logger.error("Gemini API error %s: %s", resp.status_code, resp.text[:500])
            raise LLMAPIError(f"Gemini API error: HTTP {resp.status_code}")

        text = self._completion_text(resp)
        if not as_json:
            return text
        try:
            return json.loads(text, parse_constant=_reject_constant)
        except ValueError:
            logger.warning("Gemini returned non-JSON completion: %r", text[:200])
            return clarification()

    @staticmethod
    def _completion_text(resp) -> str:
        try:
            result = resp.json()
            text = result["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Gemini response has an unexpected structure")
            raise LLMAPIError("Empty response from Gemini API")
        text = (text or "").strip()
        if not text:
            raise LLMAPIError("Empty response from Gemini API")
        return text
