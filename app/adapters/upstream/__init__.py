from __future__ import annotations

from app.adapters.upstream.http_client import UpstreamClient, create_upstream_client

__all__ = ["UpstreamClient", "create_upstream_client"]
