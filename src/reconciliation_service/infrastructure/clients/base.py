"""Thin async REST client shared by the catalog and market-price adapters."""

from typing import Any

import httpx
import orjson
import structlog

from reconciliation_service.exceptions import RemoteHttpError, TransportError

logger = structlog.get_logger()


class RestClient:
    """Verb/path/params calls returning decoded JSON.

    Transport failures raise :class:`TransportError`; non-2xx answers and 2xx
    bodies that are not JSON raise :class:`RemoteHttpError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        auth: httpx.Auth | tuple[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": "application/json", **(headers or {})},
            auth=auth,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.request(method, path, params=clean_params, json=json)
        except httpx.TransportError as e:
            logger.warning("HTTP transport error", method=method, path=path, error=str(e))
            raise TransportError(f"{method} {path}: {e}") from e

        if response.status_code >= 400:
            message = response.text[:500]
            logger.warning(
                "HTTP error response",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise RemoteHttpError(response.status_code, message)

        if not response.content:
            return None
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            logger.warning(
                "Undecodable response body",
                method=method,
                path=path,
                status=response.status_code,
                content_type=response.headers.get("content-type"),
            )
            raise RemoteHttpError(response.status_code, f"invalid JSON body: {response.text[:200]}") from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def delete(self, path: str, json: Any = None) -> Any:
        return await self.request("DELETE", path, json=json)
