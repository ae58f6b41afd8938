"""
HTTP client for a running gateway (GET/HEAD /proxy/{identifier}).

Exposes the same fetch_document / check_existence calls as DocumentGateway so
the batch runner can drive either one. The gateway's status codes are mapped
back onto the GatewayError types.
"""

import logging
import os
from typing import Optional

import httpx

from gateway.upstream import (
    DocumentNotFound,
    DocumentPayload,
    Existence,
    ExistenceCheck,
    InvalidIdentifier,
    UpstreamConnectionError,
    UpstreamError,
    validate_identifier,
)

logger = logging.getLogger(__name__)

GATEWAY_URL: str = os.getenv("GATEWAY_URL", "http://localhost:8000")


class ProxyClient:
    def __init__(
        self,
        base_url: str = GATEWAY_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        self.base_url = base_url.rstrip("/")

    async def __aenter__(self) -> "ProxyClient":
        return self

    async def __aexit__(self, *_) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, identifier: str) -> httpx.Response:
        try:
            return await self._client.request(method, f"{self.base_url}/proxy/{identifier}")
        except httpx.RequestError as exc:
            logger.warning(
                "Gateway unreachable",
                extra={"identifier": identifier, "base_url": self.base_url, "error": repr(exc)},
            )
            raise UpstreamConnectionError(identifier) from exc

    async def fetch_document(self, identifier: str) -> DocumentPayload:
        identifier = validate_identifier(identifier)
        response = await self._request("GET", identifier)

        if response.is_success:
            return DocumentPayload(identifier=identifier, content=response.content)
        if response.status_code == 400:
            raise InvalidIdentifier(identifier)
        if response.status_code == 404:
            raise DocumentNotFound(identifier)
        if _error_message(response) == UpstreamConnectionError.message:
            raise UpstreamConnectionError(identifier)
        raise UpstreamError(identifier, status_code=response.status_code)

    async def check_existence(self, identifier: str) -> ExistenceCheck:
        identifier = validate_identifier(identifier)
        response = await self._request("HEAD", identifier)

        # HEAD carries no body, so a gateway 500 can't be told apart from an
        # upstream 500; both are reported as an error category.
        if response.is_success:
            existence = Existence.EXISTS
        elif response.status_code == 404:
            existence = Existence.NOT_FOUND
        else:
            existence = Existence.ERROR
        return ExistenceCheck(identifier, existence, response.status_code)


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("error") if isinstance(body, dict) else None
