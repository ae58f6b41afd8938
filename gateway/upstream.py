"""
Upstream document server access.

Classes:
    DocumentGateway  – validates an identifier, fetches the transcript PDF
                       (GET) or checks that it exists (HEAD)
    DocumentPayload  – PDF bytes plus the headers the proxy relays
    ExistenceCheck   – result of a HEAD check

Every failure is raised as a GatewayError subclass carrying the HTTP status
and the short message the proxy puts in its JSON error body. Nothing here is
retried.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from models.identifier import document_filename, is_valid_identifier

logger = logging.getLogger(__name__)

UPSTREAM_URL_TEMPLATE: str = os.getenv(
    "UPSTREAM_URL_TEMPLATE",
    "http://extranet.unsa.edu.pe/sisacad/libretas/descarga.php"
    "?file=/var/temporal/Libreta_De_Notas_{identifier}_.pdf&codal={identifier}",
)

# The upstream answers oddly to clients that don't look like a browser
UPSTREAM_USER_AGENT: str = os.getenv("UPSTREAM_USER_AGENT", "Mozilla/5.0")

PDF_MEDIA_TYPE = "application/pdf"
CACHE_CONTROL = "public, max-age=3600"


# ── Errors ────────────────────────────────────────────────────────────────────

class GatewayError(Exception):
    """Base class for every failure the gateway reports."""

    status_code: int = 500
    message: str = "gateway error"

    def __init__(self, identifier: Optional[str] = None, message: Optional[str] = None):
        self.identifier = identifier
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidIdentifier(GatewayError):
    """Identifier is not exactly eight digits. Raised before any network call."""

    status_code = 400
    message = "invalid identifier"


class DocumentNotFound(GatewayError):
    """Upstream answered 404."""

    status_code = 404
    message = "not found"


class UpstreamError(GatewayError):
    """Upstream was reachable but answered with an unexpected status."""

    message = "upstream error"

    def __init__(self, identifier: Optional[str] = None, status_code: int = 502):
        self.status_code = status_code
        super().__init__(identifier)

    def __str__(self) -> str:
        return f"{self.message} (status {self.status_code})"


class UpstreamConnectionError(GatewayError):
    """Transport failure: refused, unreachable, timed out."""

    status_code = 500
    message = "connection error"


# ── Results ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DocumentPayload:
    identifier: str
    content: bytes

    @property
    def filename(self) -> str:
        return document_filename(self.identifier)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": PDF_MEDIA_TYPE,
            "Content-Disposition": f'inline; filename="{self.filename}"',
            "Cache-Control": CACHE_CONTROL,
        }


class Existence(str, Enum):
    EXISTS = "exists"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class ExistenceCheck:
    identifier: str
    existence: Existence
    status_code: int

    @property
    def exists(self) -> bool:
        return self.existence == Existence.EXISTS


def validate_identifier(identifier) -> str:
    if not is_valid_identifier(identifier):
        raise InvalidIdentifier(identifier if isinstance(identifier, str) else None)
    return identifier


# ── Gateway ───────────────────────────────────────────────────────────────────

class DocumentGateway:
    """
    Stateless access to the upstream document server.

    The only thing shared between calls is the httpx connection pool, so one
    instance can serve any number of concurrent callers.

    Usage:
        async with DocumentGateway() as gateway:
            payload = await gateway.fetch_document("20233489")
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url_template: str = UPSTREAM_URL_TEMPLATE,
        user_agent: str = UPSTREAM_USER_AGENT,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self.url_template = url_template
        self.user_agent = user_agent

    async def __aenter__(self) -> "DocumentGateway":
        return self

    async def __aexit__(self, *_) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def upstream_url(self, identifier: str) -> str:
        return self.url_template.format(identifier=identifier)

    async def _request(self, method: str, identifier: str) -> httpx.Response:
        url = self.upstream_url(identifier)
        try:
            return await self._client.request(
                method, url, headers={"User-Agent": self.user_agent}
            )
        except httpx.RequestError as exc:
            logger.warning(
                "Upstream request failed",
                extra={"identifier": identifier, "method": method, "error": repr(exc)},
            )
            raise UpstreamConnectionError(identifier) from exc

    async def fetch_document(self, identifier: str) -> DocumentPayload:
        identifier = validate_identifier(identifier)
        response = await self._request("GET", identifier)

        if response.is_success:
            logger.info(
                "Document fetched",
                extra={"identifier": identifier, "bytes": len(response.content)},
            )
            return DocumentPayload(identifier=identifier, content=response.content)

        logger.info(
            "Upstream refused document",
            extra={"identifier": identifier, "upstream_status": response.status_code},
        )
        if response.status_code == 404:
            raise DocumentNotFound(identifier)
        raise UpstreamError(identifier, status_code=response.status_code)

    async def check_existence(self, identifier: str) -> ExistenceCheck:
        identifier = validate_identifier(identifier)
        response = await self._request("HEAD", identifier)

        if response.is_success:
            existence = Existence.EXISTS
        elif response.status_code == 404:
            existence = Existence.NOT_FOUND
        else:
            existence = Existence.ERROR

        logger.info(
            "Existence checked",
            extra={
                "identifier": identifier,
                "existence": existence.value,
                "upstream_status": response.status_code,
            },
        )
        return ExistenceCheck(identifier, existence, response.status_code)
