"""Async client for Gemini image analysis with model fallback."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from healthlab.core.errors import ConfigurationError, ProviderRejected
from healthlab.core.image_codec import ImagePayload
from healthlab.core.model_fallback import attempt_models
from healthlab.core.models import AnalysisResult, ModelOption
from healthlab.core.normalizer import normalize_analysis
from healthlab.core.settings import DEFAULT_HTTP_TIMEOUT_S, GeminiSettings

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

BASE_PROMPT = """You are a friendly Thai health coach. Analyze the person in the uploaded image and explain what they might focus on for better health. Then recommend three concise food ideas and three simple exercise suggestions tailored to their apparent needs.

IMPORTANT: All responses MUST be written in Thai language (ภาษาไทย) only. Do not use English.

Reply strictly in JSON format with this structure (all values must be in Thai):
{
  "summary": "สรุปภาพรวมสุขภาพสั้นๆ เป็นภาษาไทย",
  "foods": ["เมนูอาหารแนะนำ 1", "เมนูอาหารแนะนำ 2", "เมนูอาหารแนะนำ 3"],
  "exercises": ["คำแนะนำการออกกำลังกาย 1", "คำแนะนำการออกกำลังกาย 2", "คำแนะนำการออกกำลังกาย 3"],
  "disclaimer": "คำเตือนสั้นๆ เป็นภาษาไทย"
}"""


def build_prompt(notes: Optional[str]) -> str:
    if not notes:
        return BASE_PROMPT
    return (
        f"{BASE_PROMPT}\n\nใช้ข้อมูลเพิ่มเติมจากผู้ใช้: {notes}\n\n"
        "โปรดตอบกลับทั้งหมดเป็นภาษาไทยเท่านั้น"
    )


@dataclass
class AnalysisReply:
    """Raw text of a model reply and its JSON body when it parsed cleanly."""

    raw: str
    parsed: Optional[Dict[str, Any]]
    model: Optional[ModelOption] = None


def _unexpected_payload(data: Any) -> ProviderRejected:
    snippet = json.dumps(data, ensure_ascii=False, default=str)[:200]
    return ProviderRejected(f"Gemini API returned an unexpected payload: {snippet}", body=snippet)


def extract_reply_text(data: Any) -> str:
    """Join the text parts of the first candidate; raises on a malformed reply."""
    if not isinstance(data, dict):
        raise _unexpected_payload(data)
    candidates = data.get("candidates") or []
    if not isinstance(candidates, list):
        raise _unexpected_payload(data)
    if not candidates:
        return ""
    first = candidates[0]
    if not isinstance(first, dict):
        raise _unexpected_payload(data)
    content = first.get("content") or {}
    if not isinstance(content, dict):
        raise _unexpected_payload(data)
    parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise _unexpected_payload(data)
    texts = [part.get("text") for part in parts if isinstance(part, dict) and part.get("text")]
    return "\n".join(texts).strip()


def _parse_reply(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class GeminiClient:
    """Sends an image plus prompt to the first Gemini model that answers."""

    def __init__(
        self,
        settings: GeminiSettings,
        timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = GEMINI_BASE_URL,
    ) -> None:
        if not settings.api_key:
            raise ConfigurationError(
                "Gemini API key not configured. Set GEMINI_API_KEY in your environment.",
                status_code=500,
            )
        self.settings = settings
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "GeminiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _build_url(self, model: ModelOption) -> str:
        return f"{self.base_url}/{model.version}/models/{model.name}:generateContent"

    async def generate_with_model(self, model: ModelOption, image: ImagePayload, notes: Optional[str]) -> AnalysisReply:
        """Call one model; raises on transport errors and non-2xx answers."""
        body = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_prompt(notes)},
                        {"inlineData": {"mimeType": image.mime_type, "data": image.to_base64()}},
                    ],
                }
            ]
        }
        response = await self._http.post(
            self._build_url(model),
            params={"key": self.settings.api_key},
            headers={"Content-Type": "application/json"},
            json=body,
        )
        if not response.is_success:
            snippet = response.text.strip().replace("\n", " ")[:200]
            raise ProviderRejected(
                f"Gemini API error ({model.name}): {response.status_code} {response.reason_phrase} - {snippet}",
                status_code=response.status_code,
                body=snippet,
            )
        text = extract_reply_text(response.json())
        return AnalysisReply(raw=text, parsed=_parse_reply(text), model=model)

    async def generate(self, image: ImagePayload, notes: Optional[str] = None) -> AnalysisReply:
        return await attempt_models(
            self.settings.model_order,
            lambda model: self.generate_with_model(model, image, notes),
        )

    async def analyze(self, image: ImagePayload, notes: Optional[str] = None) -> tuple[AnalysisResult, AnalysisReply]:
        """Analyze an image and return the normalized result with the raw reply."""
        notes = (notes or "").strip() or None
        reply = await self.generate(image, notes)
        logger.info("Image analysis answered by %s", reply.model)
        source: Any = reply.parsed if reply.parsed is not None else {"raw": reply.raw}
        result = normalize_analysis(source)
        return result.with_context(datetime.now(timezone.utc), notes), reply
