"""Delivery client -- one POST to the engagement platform's upload endpoint.

Resolves the endpoint from the credentials (explicit base URL first, then the
region table), sends the account headers and the serialized body, and returns
the raw status/body. Exactly one attempt is made; there is no retry.
Network failures and timeouts surface as TransportError.
"""

from __future__ import annotations

import httpx
import structlog

from src.engage_sync.core.monitoring import track_delivery
from src.engage_sync.sync.errors import TransportError
from src.engage_sync.sync.schemas import Credentials, DeliveryResponse, Region

logger = structlog.get_logger(__name__)

REGION_ENDPOINTS: dict[Region, str] = {
    Region.IN: "https://in1.api.clevertap.com/1/upload",
    Region.US: "https://us1.api.clevertap.com/1/upload",
    Region.EU: "https://eu1.api.clevertap.com/1/upload",
}

ACCOUNT_ID_HEADER = "X-CleverTap-Account-Id"
PASSCODE_HEADER = "X-CleverTap-Passcode"
CONTENT_TYPE = "application/json; charset=utf-8"


def resolve_endpoint(credentials: Credentials) -> str:
    """Return the upload URL for a credential set.

    Raises:
        TransportError: If neither a base URL nor a known region is set.
    """
    explicit = (credentials.api_base_url or "").strip()
    if explicit:
        return explicit
    if credentials.region in REGION_ENDPOINTS:
        return REGION_ENDPOINTS[credentials.region]
    raise TransportError("No endpoint configured: credentials carry neither a URL nor a region")


def build_headers(credentials: Credentials) -> dict[str, str]:
    return {
        ACCOUNT_ID_HEADER: credentials.account_id,
        PASSCODE_HEADER: credentials.passcode,
        "Content-Type": CONTENT_TYPE,
    }


class DeliveryClient:
    """Async client for the engagement platform upload API.

    Args:
        timeout: Upper bound in seconds for one request (default 120).
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    DEFAULT_TIMEOUT = 120.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def send(self, credentials: Credentials, body: str) -> DeliveryResponse:
        """POST a serialized body and return the raw response.

        Args:
            credentials: Complete credential set.
            body: Serialized request body from build_payload().

        Returns:
            DeliveryResponse with the status code and body text.

        Raises:
            TransportError: On connect errors, timeouts, or protocol errors.
        """
        url = resolve_endpoint(credentials)
        region = credentials.region.value if credentials.region else "custom"

        try:
            async with track_delivery(region):
                async with self._client() as client:
                    response = await client.post(
                        url,
                        content=body.encode("utf-8"),
                        headers=build_headers(credentials),
                    )
        except httpx.TimeoutException as exc:
            logger.warning("delivery.timeout", url=url, timeout=self._timeout)
            raise TransportError(
                f"Request timed out after {self._timeout:g}s: {exc!r}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("delivery.transport_error", url=url, error=str(exc))
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

        logger.info(
            "delivery.response",
            url=url,
            status_code=response.status_code,
            credentials_name=credentials.name,
        )
        return DeliveryResponse(status_code=response.status_code, body=response.text)
