"""Base URL fallback for providers that expose several API roots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence

import httpx

from healthlab.core.errors import EndpointExhausted, NoCandidates, ProviderRejected

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS = ("https://api.meshy.ai/v1", "https://api.meshy.ai/v2")
NOT_FOUND_STATUSES: FrozenSet[int] = frozenset({404})

RequestFactory = Callable[[], Dict[str, Any]]


@dataclass
class FallbackResult:
    """Successful response and the base URL that produced it."""

    response: httpx.Response
    base_url: str


def sanitize_base(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def build_candidates(
    preferred_base: Optional[str],
    default_base: Optional[str],
    fallback_bases: Iterable[str],
) -> List[str]:
    """Order candidates as preferred, configured default, then fallbacks.

    Duplicates are removed and the first occurrence keeps its position.
    """
    ordered: List[str] = []
    for raw in (preferred_base, default_base, *fallback_bases):
        base = sanitize_base(raw)
        if base and base not in ordered:
            ordered.append(base)
    return ordered


def _error_snippet(response: httpx.Response) -> str:
    return response.text.strip().replace("\n", " ")[:200]


class EndpointFallbackRequester:
    """Tries one logical request against each candidate base URL in turn."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        default_base: Optional[str] = None,
        fallback_bases: Sequence[str] = DEFAULT_BASE_URLS,
        continue_statuses: FrozenSet[int] = NOT_FOUND_STATUSES,
    ) -> None:
        self.http = http
        self.default_base = default_base
        self.fallback_bases = tuple(fallback_bases)
        self.continue_statuses = continue_statuses

    def candidates(self, preferred_base: Optional[str] = None) -> List[str]:
        return build_candidates(preferred_base, self.default_base, self.fallback_bases)

    async def attempt(
        self,
        method: str,
        path: str,
        build_request: RequestFactory,
        preferred_base: Optional[str] = None,
    ) -> FallbackResult:
        """Send the request to each candidate until one succeeds.

        A not-found answer moves on to the next candidate; any other failure
        is raised immediately as ``ProviderRejected``.
        """
        last_miss: Optional[httpx.Response] = None
        last_url = ""
        for base in self.candidates(preferred_base):
            url = f"{base}{path}"
            logger.debug("%s %s", method, url)
            try:
                response = await self.http.request(method, url, **build_request())
            except httpx.HTTPError as exc:
                raise ProviderRejected(f"Provider request failed ({url}): {exc}", url=url) from exc

            if response.is_success:
                return FallbackResult(response=response, base_url=base)

            if response.status_code not in self.continue_statuses:
                snippet = _error_snippet(response)
                raise ProviderRejected(
                    f"Provider request failed ({url}): "
                    f"{response.status_code} {response.reason_phrase} - {snippet}",
                    status_code=response.status_code,
                    url=url,
                    body=snippet,
                )

            logger.info("%s answered %s, trying next base URL", url, response.status_code)
            last_miss = response
            last_url = url

        if last_miss is None:
            raise NoCandidates("Provider request failed: no base URLs available.")
        snippet = _error_snippet(last_miss)
        raise EndpointExhausted(
            f"Provider request failed ({last_url}): "
            f"{last_miss.status_code} {last_miss.reason_phrase} - {snippet}",
            status_code=last_miss.status_code,
            url=last_url,
            body=snippet,
        )
