"""HTTP boundary to the authentication service (WSAA)."""

import logging
from dataclasses import dataclass

import httpx

from credentials.tickets.errors import TransportError
from credentials.tickets.protocol import build_login_envelope

logger = logging.getLogger(__name__)

SOAP_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "SOAPAction": '""',
}


@dataclass(frozen=True)
class WsaaResponse:
    status_code: int
    content: bytes


class WsaaTransport:
    """Posts ``loginCms`` envelopes and hands back the raw response.

    Status codes are not interpreted here; a SOAP fault usually arrives with
    HTTP 500 and must reach the protocol layer intact.
    """

    def __init__(
        self,
        url: str,
        http: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self._owns_client = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._timeout = timeout

    async def login_cms(self, cms_b64: str) -> WsaaResponse:
        """Send a signed login request.

        Raises:
            TransportError: On timeouts and connection failures.
        """
        body = build_login_envelope(cms_b64)
        try:
            response = await self._http.post(
                self.url,
                content=body,
                headers=SOAP_HEADERS,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.error("wsaa_timeout", extra={"url": self.url, "timeout": self._timeout})
            raise TransportError(
                f"The authentication service did not answer within {self._timeout:g} seconds"
            ) from e
        except httpx.HTTPError as e:
            logger.error("wsaa_unreachable", extra={"url": self.url, "error": str(e)})
            raise TransportError(f"Could not reach the authentication service: {e}") from e

        logger.debug(
            "wsaa_response_received",
            extra={"status": response.status_code, "bytes": len(response.content)},
        )
        return WsaaResponse(status_code=response.status_code, content=response.content)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
