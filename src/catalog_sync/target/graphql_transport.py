"""HTTP transport for the target platform's GraphQL admin API."""

from typing import Any

import requests
import structlog
from requests.exceptions import ConnectionError, Timeout

from catalog_sync.errors import (
    TargetApiError,
    ThrottledError,
    ThrottleStatus,
    TransientTransportError,
)

log = structlog.stdlib.get_logger()

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"


def is_throttle_error(error: dict[str, Any]) -> bool:
    extensions = error.get("extensions") or {}
    return error.get("message") == "Throttled" or extensions.get("code") == "THROTTLED"


class GraphQLTransport:
    """Posts GraphQL documents and classifies failures into the error taxonomy."""

    def __init__(
        self,
        endpoint: str,
        access_token: str,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize the transport.

        Args:
            endpoint: Full GraphQL endpoint URL
            access_token: Admin API access token
            timeout_seconds: Per-request timeout
            session: Optional pre-built session (tests inject mocks here)
        """
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                ACCESS_TOKEN_HEADER: access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )
        log.info("graphql_transport_initialized", endpoint=endpoint)

    def post(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Execute one GraphQL request.

        Returns:
            Decoded response body with ``data`` and optional ``extensions``

        Raises:
            ThrottledError: HTTP 429 or a THROTTLED GraphQL error
            TransientTransportError: Connection failure, timeout or HTTP 5xx
            TargetApiError: Any other HTTP or GraphQL error
        """
        try:
            response = self._session.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout_seconds,
            )
        except (ConnectionError, Timeout) as e:
            raise TransientTransportError(f"Request to target failed: {e}") from e

        body = self._decode(response)

        if response.status_code == 429:
            raise ThrottledError(
                "Throttled", ThrottleStatus.from_extensions(body.get("extensions"))
            )
        if response.status_code >= 500:
            raise TransientTransportError(
                f"Target returned HTTP {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise TargetApiError(
                f"Target returned HTTP {response.status_code}: {response.text[:200]}"
            )

        errors = body.get("errors") or []
        if errors:
            if any(is_throttle_error(error) for error in errors):
                raise ThrottledError(
                    "Throttled", ThrottleStatus.from_extensions(body.get("extensions"))
                )
            messages = "; ".join(str(error.get("message", error)) for error in errors)
            raise TargetApiError(f"GraphQL errors: {messages}")

        return body

    def _decode(self, response: requests.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            if response.status_code >= 500 or response.status_code == 429:
                return {}
            raise TargetApiError(
                f"Target returned a non-JSON body (HTTP {response.status_code})"
            ) from e
        return body if isinstance(body, dict) else {}
