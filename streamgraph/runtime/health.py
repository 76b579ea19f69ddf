"""
HTTP probing of the streaming endpoint.

Every request walks a list of candidate base URLs and stops at the first one
that answers; each call is bounded by a short timeout so a dead endpoint can
never stall a background loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import httpx

LOG = logging.getLogger(__name__)

CLIENTS_PATH = "/api/clients"
STATUS_PATH = "/api/status"


@dataclass
class ProbeResult:
    base_url: str
    status_code: int
    payload: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HealthProbe:
    """
    Client for the streaming endpoint's HTTP API.

    ``transport`` is handed to :class:`httpx.AsyncClient`; tests pass an
    :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        base_urls: Sequence[str],
        *,
        timeout: float = 1.5,
        auth: Optional[Tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_urls = [url.rstrip("/") for url in base_urls if url]
        self.timeout = timeout
        self.auth = auth
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            auth=self.auth,
            transport=self._transport,
            verify=False,
        )

    async def request(self, method: str, path: str, *, json: Any = None) -> Optional[ProbeResult]:
        """
        Send ``method path`` to the first candidate that answers.

        Connection failures and timeouts move on to the next candidate; any
        HTTP response (even an error status) ends the search.  Returns
        ``None`` when no candidate answered.
        """

        async with self.client() as client:
            for base in self.base_urls:
                try:
                    response = await client.request(method, base + path, json=json)
                except httpx.HTTPError as exc:
                    LOG.debug("%s %s%s failed: %s", method, base, path, exc)
                    continue
                return ProbeResult(base, response.status_code, _decode(response))
        return None

    async def get_json(self, path: str) -> Optional[Any]:
        result = await self.request("GET", path)
        if result is None or not result.ok:
            return None
        return result.payload

    async def reachable(self) -> bool:
        result = await self.request("GET", "/")
        return result is not None and result.status_code < 500

    async def connected_clients(self) -> List[dict]:
        payload = await self.get_json(CLIENTS_PATH)
        if isinstance(payload, dict) and isinstance(payload.get("clients"), list):
            return payload["clients"]
        if isinstance(payload, list):
            return payload
        return []

    async def status(self) -> Optional[Any]:
        return await self.get_json(STATUS_PATH)


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["CLIENTS_PATH", "HealthProbe", "ProbeResult", "STATUS_PATH"]
