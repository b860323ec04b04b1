from __future__ import annotations

import json
import logging
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from config import get_settings


logger = logging.getLogger(__name__)

# Rate limited / overloaded: worth retrying, then falling back.
OVERLOAD_STATUS_CODES = frozenset({429, 503})


class AIServiceError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_overloaded(self) -> bool:
        return self.status in OVERLOAD_STATUS_CODES


class AIServiceUnavailable(AIServiceError):
    """No credentials configured; handled like an overloaded service."""

    @property
    def is_overloaded(self) -> bool:
        return True


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.timeout = timeout if timeout is not None else settings.ai_timeout_secs

    def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AIServiceUnavailable("Gemini API key is not configured")

        url = (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{quote(self.model)}:generateContent?key={quote(self.api_key)}"
        )
        body = json.dumps({"contents": [{"parts": [{"text": prompt}]}]}).encode("utf-8")
        req = Request(
            url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")[:500]
            raise AIServiceError(
                f"Gemini returned HTTP {exc.code}: {detail}", status=exc.code
            ) from exc
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise AIServiceError(f"Gemini request failed: {exc}") from exc

        return _candidate_text(payload)


def _candidate_text(payload: dict) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        logger.warning("gemini_empty_response: no candidates in payload")
        return "{}"
    return "".join(part.get("text", "") for part in parts) or "{}"
