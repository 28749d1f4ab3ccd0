import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from recipe_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)


class LlmClientError(Exception):
    """Transport or proxy-level failure talking to the LLM backend."""


# Remove ASCII control chars that frequently break json.loads (except \n, \r, \t)
def strip_invalid_control_chars(s: str) -> str:
    if not isinstance(s, str):
        return str(s)
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", s)


def strip_code_fence(text: str) -> str:
    txt = text.strip()
    if txt.startswith("```"):
        # Remove leading fence with optional language tag
        txt = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", txt, count=1)
        txt = re.sub(r"\s*```$", "", txt, count=1).strip()
    return txt


def extract_json_object(raw: str) -> Any:
    """Parse the JSON object in ``raw``, tolerating code fences and surrounding prose.

    Raises ``json.JSONDecodeError`` when nothing parseable is found.
    """
    cleaned = strip_code_fence(strip_invalid_control_chars(raw or ""))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end > start:
            return json.loads(cleaned[start : end + 1])
        raise


def _headers() -> Dict[str, str]:
    settings = get_settings()
    headers = {"Content-Type": "application/json"}
    if settings.llm_app_id and settings.llm_app_key:
        headers["X-App-Id"] = settings.llm_app_id
        headers["X-App-Key"] = settings.llm_app_key
    return headers


class LlmClient:
    """Thin async client for an OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.llm_base_url or "").rstrip("/")
        self.model = model or settings.llm_full_model_name or "full"
        self.timeout_seconds = timeout_seconds or settings.llm_timeout_seconds
        self._transport = transport

    async def complete(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        json_mode: bool = True,
    ) -> str:
        if not self.base_url:
            raise LlmClientError("LLM_BASE_URL is not configured")
        chat: List[Dict[str, str]] = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend(messages)
        payload: Dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "messages": chat,
            "max_tokens": max_tokens,
            "stream": False,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        timeout = httpx.Timeout(self.timeout_seconds, read=self.timeout_seconds, connect=10.0)
        kwargs: Dict[str, Any] = {"timeout": timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.post(f"{self.base_url}/v1/chat/completions", json=payload, headers=_headers())
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("LLM request failed: %s", exc)
            raise LlmClientError(f"LLM request failed: {exc}") from exc

        # Error envelope from the LLM proxy
        if isinstance(data, dict) and "error" in data:
            error_info = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            error_type = error_info.get("type", "unknown_error")
            error_message = error_info.get("message", "Unknown error")
            logger.error("LLM proxy returned error: type=%s, message=%s", error_type, error_message[:500])
            raise LlmClientError(f"LLM proxy error ({error_type}): {error_message}")

        content = (data.get("choices") or [{}])[0].get("message", {}).get("content")
        if not content:
            raise LlmClientError("LLM response missing content")
        return content if isinstance(content, str) else str(content)


_client: Optional[LlmClient] = None


def get_llm_client() -> LlmClient:
    global _client
    if _client is None:
        _client = LlmClient()
    return _client
