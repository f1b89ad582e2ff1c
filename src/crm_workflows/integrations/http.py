"""
httpx based HTTP caller for webhook nodes
"""
import json
import logging
from typing import Any, Dict, Optional

import httpx

from .capabilities import HttpCaller, HttpResponse


logger = logging.getLogger(__name__)


class HttpxHttpCaller(HttpCaller):
    """HttpCaller backed by a shared ``httpx.AsyncClient``"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def call(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        body: Optional[Any] = None
    ) -> HttpResponse:
        content = None
        if body is not None:
            content = body if isinstance(body, (str, bytes)) else json.dumps(body)

        response = await self._client.request(
            method.upper(),
            url,
            headers=headers,
            content=content
        )
        logger.debug(f"{method.upper()} {url} -> {response.status_code}")

        return HttpResponse(
            status=response.status_code,
            body=response.text,
            headers=dict(response.headers)
        )

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
