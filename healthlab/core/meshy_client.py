"""Async HTTP client for Meshy text-to-3d and image-to-3d tasks."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from healthlab.core.endpoints import EndpointFallbackRequester, FallbackResult
from healthlab.core.errors import ConfigurationError, InvalidSubmission, ProviderRejected
from healthlab.core.image_codec import extension_from_mime
from healthlab.core.models import (
    SOURCE_IMAGE,
    SOURCE_TEXT,
    STATUS_PENDING,
    GenerationRequest,
    GenerationTask,
)
from healthlab.core.settings import DEFAULT_HTTP_TIMEOUT_S, MeshySettings

logger = logging.getLogger(__name__)

DEFAULT_MODE = "preview"
DEFAULT_TOPOLOGY = "triangle"

TASK_PATHS = {SOURCE_TEXT: "/text-to-3d", SOURCE_IMAGE: "/image-to-3d"}


def _read_progress(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        progress = float(value)
    except (TypeError, ValueError):
        return None
    if 0 <= progress <= 1:
        progress *= 100
    return progress


def _read_json(result: FallbackResult) -> Dict[str, Any]:
    try:
        data = result.response.json()
    except ValueError as exc:
        raise ProviderRejected(
            f"Meshy API returned invalid JSON from {result.base_url}",
            status_code=result.response.status_code,
            url=str(result.response.request.url),
        ) from exc
    if not isinstance(data, dict):
        raise ProviderRejected(
            f"Meshy API returned an unexpected payload from {result.base_url}",
            status_code=result.response.status_code,
        )
    return data


class MeshyClient:
    """Submits Meshy generation tasks and fetches their status."""

    def __init__(
        self,
        settings: MeshySettings,
        timeout: float = DEFAULT_HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not settings.api_key:
            raise ConfigurationError(
                "Meshy API key not configured. Set MESHY_API_KEY in your environment.",
                status_code=500,
            )
        self.settings = settings
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._requester = EndpointFallbackRequester(
            self._http,
            default_base=settings.preferred_base,
            fallback_bases=settings.fallback_bases,
        )

    async def __aenter__(self) -> "MeshyClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _headers(self, content_type: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Accept": "application/json",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def submit(self, kind: str, request: GenerationRequest) -> GenerationTask:
        """Create a generation task and return its first snapshot."""
        if kind == SOURCE_TEXT:
            result = await self.create_text_to_3d_task(request)
        elif kind == SOURCE_IMAGE:
            result = await self.create_image_to_3d_task(request)
        else:
            raise InvalidSubmission(f"Unknown task kind {kind!r}. Use 'text' or 'image'.", status_code=400)

        data = _read_json(result)
        task_id = data.get("task_id") or data.get("result") or data.get("id")
        if not task_id:
            raise ProviderRejected("Meshy API response missing task id", status_code=result.response.status_code)
        logger.info("Submitted %s task %s via %s", kind, task_id, result.base_url)
        return GenerationTask(
            task_id=str(task_id),
            source=kind,
            status=str(data.get("status") or STATUS_PENDING),
            accepted_endpoint=result.base_url,
            payload=data,
        )

    async def create_text_to_3d_task(self, request: GenerationRequest) -> FallbackResult:
        prompt = request.prompt
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidSubmission("A text prompt is required to generate a 3D model.", status_code=400)

        body: Dict[str, Any] = {
            "mode": request.mode or DEFAULT_MODE,
            "prompt": prompt,
            "topology": request.topology or DEFAULT_TOPOLOGY,
        }
        if request.style:
            body["style"] = request.style

        return await self._requester.attempt(
            "POST",
            TASK_PATHS[SOURCE_TEXT],
            lambda: {"headers": self._headers("application/json"), "json": body},
        )

    async def create_image_to_3d_task(self, request: GenerationRequest) -> FallbackResult:
        if not request.image_data or not request.image_mime_type:
            raise InvalidSubmission("Image data and mime type are required.", status_code=400)

        filename = f"reference.{extension_from_mime(request.image_mime_type)}"
        fields = {
            key: value
            for key, value in (
                ("prompt", request.prompt),
                ("style", request.style),
                ("mode", request.mode),
                ("topology", request.topology),
            )
            if value
        }

        # httpx sets the multipart boundary header itself
        def build_form() -> Dict[str, Any]:
            return {
                "headers": self._headers(),
                "data": fields,
                "files": {"image": (filename, request.image_data, request.image_mime_type)},
            }

        return await self._requester.attempt("POST", TASK_PATHS[SOURCE_IMAGE], build_form)

    async def poll(self, task_id: str, source: str, endpoint_hint: Optional[str] = None) -> GenerationTask:
        """Fetch a task snapshot, preferring the base URL that accepted it."""
        if not task_id:
            raise InvalidSubmission("taskId is required.", status_code=400)
        kind = SOURCE_IMAGE if source == SOURCE_IMAGE else SOURCE_TEXT
        result = await self._requester.attempt(
            "GET",
            f"{TASK_PATHS[kind]}/{task_id}",
            lambda: {"headers": self._headers()},
            preferred_base=endpoint_hint,
        )
        data = _read_json(result)
        model_urls = data.get("model_urls") or {}
        mesh_url = model_urls.get("glb") if isinstance(model_urls, dict) else None
        return GenerationTask(
            task_id=task_id,
            source=kind,
            status=str(data.get("status") or STATUS_PENDING),
            accepted_endpoint=result.base_url,
            mesh_url=mesh_url or None,
            preview_url=data.get("preview_image_url") or data.get("thumbnail_url") or None,
            progress=_read_progress(data.get("progress")),
            payload=data,
        )
