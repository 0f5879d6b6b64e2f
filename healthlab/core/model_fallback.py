"""Ordered model fallback for providers with interchangeable model variants."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import httpx

from healthlab.core.errors import AllModelsFailed, HealthLabError
from healthlab.core.models import ModelOption

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECOVERABLE_ERRORS = (HealthLabError, httpx.HTTPError, ValueError)


async def attempt_models(
    models: Sequence[ModelOption],
    call: Callable[[ModelOption], Awaitable[T]],
) -> T:
    """Return the first successful ``call(model)`` result, in model order."""
    last_error: Optional[BaseException] = None
    for model in models:
        try:
            return await call(model)
        except RECOVERABLE_ERRORS as exc:
            logger.warning("Failed to use model %s: %s", model, exc)
            last_error = exc

    if last_error is None:
        raise AllModelsFailed("No models configured. Check the model order setting.")
    raise AllModelsFailed(
        f"All models failed. Last error: {last_error}",
        status_code=getattr(last_error, "status_code", None),
    ) from last_error
