"""
HTTP client for the credential/storage backend.

The backend may be reachable under different base URLs depending on whether
the services run in Docker or on the host, so each call walks the candidate
list until one answers. Replies come back as ExternalReply, never as
exceptions.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from . import config
from .models import ExternalReply

logger = logging.getLogger(__name__)


def parse_json_reply(resp: httpx.Response, base_url: Optional[str] = None) -> ExternalReply:
    """Classify an HTTP response as an ok JSON object or a malformed reply."""
    try:
        data = resp.json()
    except ValueError:
        return ExternalReply.malformed(
            f"invalid JSON (HTTP {resp.status_code}): {resp.text[:200]}",
            status_code=resp.status_code,
            base_url=base_url,
        )
    if not isinstance(data, dict):
        return ExternalReply.malformed(
            f"expected a JSON object, got {type(data).__name__}",
            status_code=resp.status_code,
            base_url=base_url,
        )
    return ExternalReply.success(data, resp.status_code, base_url=base_url)


class BackendClient:
    """Talks to the backend that stores cookies and archives files."""

    def __init__(
        self,
        base_urls: Optional[List[str]] = None,
        timeout: float = config.BACKEND_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_urls = list(base_urls or config.BACKEND_URL_CANDIDATES)
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def _normalize_path(pathname: str) -> str:
        if not pathname:
            return "/"
        return pathname if pathname.startswith("/") else f"/{pathname}"

    async def request(
        self,
        method: str,
        pathname: str,
        json: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ExternalReply:
        path = self._normalize_path(pathname)
        last_error = "no backend URL configured"

        async with httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
        ) as client:
            for base_url in self.base_urls:
                target = f"{base_url}{path}"
                try:
                    resp = await client.request(method, target, json=json)
                except httpx.HTTPError as e:
                    last_error = f"{type(e).__name__}: {e}"
                    logger.debug(f"Backend candidate failed {target}: {last_error}")
                    continue
                return parse_json_reply(resp, base_url=base_url)

        logger.warning(f"⚠️ All backend endpoints failed for {path}: {last_error}")
        return ExternalReply.network_error(f"All backend endpoints failed: {last_error}")

    async def get_json(self, pathname: str) -> ExternalReply:
        return await self.request("GET", pathname)

    async def post_json(self, pathname: str, body: Dict[str, Any], timeout: Optional[float] = None) -> ExternalReply:
        return await self.request("POST", pathname, json=body, timeout=timeout)
