"""HTTP client for the external services, gated by per-resource limiters.

Every request goes through the limiter of the resource it targets. Identical
GET requests issued concurrently are coalesced before reaching the limiter, so
a burst of duplicates occupies a single slot.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Mapping

import httpx

from app.core.config import UpstreamSettings, settings
from app.core.errors import UpstreamAppError
from app.core.limits import Resource, ResourceLimiters
from app.utils.request_dedup import InflightDeduplicator

logger = logging.getLogger(__name__)


def _dedup_key(
    resource: Resource,
    url: str,
    params: Mapping[str, Any] | None,
    headers: Mapping[str, str] | None,
    json_body: Any,
) -> str:
    """Build a key identifying a request by everything that can change its response.

    The key is hashed since headers may carry credentials.
    """
    query = sorted((str(k), str(v)) for k, v in (params or {}).items())
    header_items = sorted((k.lower(), v) for k, v in (headers or {}).items())
    body = json.dumps(json_body, sort_keys=True, default=str)
    raw = f"{resource.value}:{url}?{query}|{header_items}|{body}"
    return hashlib.sha256(raw.encode()).hexdigest()


class UpstreamClient:
    """Async JSON client for the search, geocoding and map-data services.

    Attributes:
        limiters: Limiters shared with every other caller of these services.
        base_urls: Base URL per resource.
    """

    def __init__(
        self,
        *,
        limiters: ResourceLimiters,
        base_urls: Mapping[Resource, str],
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            limiters: Per-resource limiters built at startup.
            base_urls: Base URL for each resource.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport (tests use httpx.MockTransport).

        Raises:
            ValueError: If a resource has no base URL.
        """
        missing = [r.value for r in Resource if not base_urls.get(r)]
        if missing:
            raise ValueError(f"missing base URL for: {', '.join(missing)}")

        self.limiters = limiters
        self.base_urls = {r: base_urls[r].rstrip("/") for r in Resource}
        self._client = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)
        self._dedup = InflightDeduplicator()

    def build_url(self, resource: Resource, path: str) -> str:
        return f"{self.base_urls[resource]}/{path.lstrip('/')}"

    async def request_json(
        self,
        resource: Resource,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """Send a request to a resource and decode the JSON response.

        Args:
            resource: Target service; selects the limiter and base URL.
            method: HTTP method.
            path: Path relative to the resource base URL.
            params: Query parameters.
            json_body: JSON request body.
            headers: Extra request headers.

        Returns:
            Decoded JSON body.

        Raises:
            UpstreamAppError: On HTTP error status, transport failure, or a body
                that is not valid JSON.
        """
        method = method.upper()
        url = self.build_url(resource, path)
        limiter = self.limiters.for_resource(resource)

        async def _send() -> Any:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
            response.raise_for_status()
            return response.json()

        async def _limited() -> Any:
            return await limiter.run(_send)

        try:
            if method == "GET":
                return await self._dedup.run(
                    _dedup_key(resource, url, params, headers, json_body), _limited
                )
            return await _limited()
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            logger.warning(
                "upstream.request_failed",
                extra={
                    "resource": resource.value,
                    "method": method,
                    "path": path,
                    "status_code": status_code,
                },
            )
            raise UpstreamAppError(
                code="upstream_http_error",
                message=f"{resource.value} service returned HTTP {status_code}",
                details={"http_status": status_code, "resource": resource.value},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "upstream.request_failed",
                extra={
                    "resource": resource.value,
                    "method": method,
                    "path": path,
                    "error_type": type(exc).__name__,
                },
            )
            raise UpstreamAppError(
                code="upstream_unavailable",
                message=f"{resource.value} service could not be reached",
                details={"resource": resource.value},
            ) from exc
        except json.JSONDecodeError as exc:
            raise UpstreamAppError(
                code="upstream_invalid_json",
                message=f"{resource.value} service returned a non-JSON body",
                details={"resource": resource.value},
            ) from exc

    def stats(self) -> dict[str, int]:
        return self._dedup.stats()

    async def aclose(self) -> None:
        await self._client.aclose()


def create_upstream_client(
    limiters: ResourceLimiters,
    upstream_settings: UpstreamSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> UpstreamClient:
    """Build an UpstreamClient from configuration.

    Args:
        limiters: Limiters built at startup.
        upstream_settings: Endpoint settings; defaults to global settings if omitted.
        transport: Optional httpx transport override.
    """
    cfg = upstream_settings or settings.upstream
    return UpstreamClient(
        limiters=limiters,
        base_urls={
            Resource.SEARCH: cfg.search_base_url,
            Resource.GEOCODING: cfg.geocoding_base_url,
            Resource.MAP_DATA: cfg.map_data_base_url,
        },
        timeout_seconds=cfg.timeout_seconds,
        transport=transport,
    )
