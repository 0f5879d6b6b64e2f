"""HTTP proxy endpoints used by the browser pages.

The browser never sees provider API keys: it posts form data here and this
module forwards it to Meshy or Gemini.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from healthlab.core.errors import ConfigurationError, HealthLabError, InvalidSubmission
from healthlab.core.gemini_client import GeminiClient
from healthlab.core.image_codec import decode_image_base64
from healthlab.core.meshy_client import MeshyClient
from healthlab.core.models import SOURCE_IMAGE, SOURCE_TEXT, GenerationRequest
from healthlab.core.settings import Settings

logger = logging.getLogger(__name__)


class MeshySubmitBody(BaseModel):
    """Submission form. Either a prompt or an image is required."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: Optional[str] = None
    style: Optional[str] = None
    topology: Optional[str] = None
    mode: Optional[str] = None
    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    image_mime_type: Optional[str] = Field(default=None, alias="imageMimeType")


class GeminiAnalyzeBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    notes: Optional[str] = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe_validation(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query"))
        problems.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return "; ".join(problems) or "Invalid request."


def create_app(
    settings: Optional[Settings] = None,
    meshy_client: Optional[MeshyClient] = None,
    gemini_client: Optional[GeminiClient] = None,
) -> FastAPI:
    """Build the proxy application.

    Clients are created from ``settings`` at startup when not injected; a
    provider without an API key answers every request with a 500 error.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = []
        meshy = meshy_client
        gemini = gemini_client
        if meshy is None and settings.meshy.api_key:
            meshy = MeshyClient(settings.meshy, timeout=settings.http_timeout_s)
            owned.append(meshy)
        if gemini is None and settings.gemini.api_key:
            gemini = GeminiClient(settings.gemini, timeout=settings.http_timeout_s)
            owned.append(gemini)
        app.state.meshy = meshy
        app.state.gemini = gemini
        try:
            yield
        finally:
            for client in owned:
                await client.aclose()

    app = FastAPI(title="Health Lab", lifespan=lifespan)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, _describe_validation(exc))

    @app.exception_handler(InvalidSubmission)
    async def invalid_submission_handler(request: Request, exc: InvalidSubmission) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(HealthLabError)
    async def provider_error_handler(request: Request, exc: HealthLabError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(500, str(exc) or "Provider request failed.")

    def require_meshy(request: Request) -> MeshyClient:
        client = request.app.state.meshy
        if client is None:
            raise ConfigurationError("Meshy API key not configured. Set MESHY_API_KEY in your environment.")
        return client

    def require_gemini(request: Request) -> GeminiClient:
        client = request.app.state.gemini
        if client is None:
            raise ConfigurationError("Gemini API key not configured. Set GEMINI_API_KEY in your environment.")
        return client

    @app.post("/api/meshy", status_code=202)
    async def submit_generation(body: MeshySubmitBody, request: Request) -> Dict[str, Any]:
        client = require_meshy(request)
        if body.image_base64:
            image = decode_image_base64(body.image_base64, body.image_mime_type)
            kind = SOURCE_IMAGE
            generation = GenerationRequest(
                prompt=body.prompt,
                style=body.style,
                mode=body.mode,
                topology=body.topology,
                image_data=image.data,
                image_mime_type=image.mime_type,
            )
        else:
            if not body.prompt:
                raise InvalidSubmission("A text prompt is required to generate a 3D model.")
            kind = SOURCE_TEXT
            generation = GenerationRequest(
                prompt=body.prompt, style=body.style, mode=body.mode, topology=body.topology
            )
        task = await client.submit(kind, generation)
        return {
            "taskId": task.task_id,
            "status": task.status,
            "source": task.source,
            "endpoint": task.accepted_endpoint,
        }

    @app.get("/api/meshy")
    async def generation_status(
        request: Request,
        task_id: Optional[str] = Query(default=None, alias="taskId"),
        source: Optional[str] = Query(default=None),
        endpoint: Optional[str] = Query(default=None),
    ) -> Dict[str, Any]:
        client = require_meshy(request)
        if not task_id:
            raise InvalidSubmission("taskId query parameter is required.")
        task = await client.poll(task_id, source or SOURCE_TEXT, endpoint)
        return {
            "taskId": task.task_id,
            "status": task.status,
            "meshUrl": task.mesh_url,
            "previewUrl": task.preview_url,
            "progress": task.progress,
            "task": task.payload,
            "source": task.source,
            "endpoint": task.accepted_endpoint,
        }

    @app.post("/api/gemini")
    async def analyze_image(body: GeminiAnalyzeBody, request: Request) -> Dict[str, Any]:
        client = require_gemini(request)
        if not body.image_base64 or not body.mime_type:
            raise InvalidSubmission("Image data and mimeType are required.")
        image = decode_image_base64(body.image_base64, body.mime_type)
        result, reply = await client.analyze(image, body.notes)
        return {**result.to_dict(), "raw": reply.raw}

    return app
