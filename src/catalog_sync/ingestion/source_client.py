"""Client for the source-of-truth API."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, Protocol

import requests
import structlog
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from catalog_sync.errors import FetchError
from catalog_sync.models.entity import EntityKind, SourceEntity
from catalog_sync.utils.retry import exponential_backoff_retry

if TYPE_CHECKING:
    from catalog_sync.sync.strategies import KindStrategy

log = structlog.stdlib.get_logger()


@dataclass
class InvalidSourceRecord:
    """A source record that could not be turned into a SourceEntity."""

    kind: EntityKind
    external_id: str | None
    error: str


SourceItem = SourceEntity | InvalidSourceRecord


class SourceClient(Protocol):
    def iter_entities(self, kind: EntityKind) -> Iterator[SourceItem]: ...


class HttpSourceClient:
    """Pages through ``GET {base_url}/api/{endpoint}`` for each entity kind."""

    def __init__(
        self,
        base_url: str,
        strategies: dict[EntityKind, "KindStrategy"],
        auth_token: str | None = None,
        page_size: int = 100,
        timeout_seconds: float = 30.0,
        structured_object_types: list[str] | None = None,
        session: requests.Session | None = None,
    ):
        """
        Initialize the source client.

        Args:
            base_url: Source API base URL
            strategies: Strategy per kind (endpoint, response key, parser)
            auth_token: Optional bearer token
            page_size: Records requested per page
            timeout_seconds: Per-request timeout
            structured_object_types: Structured object types, fetched one after another
            session: Optional pre-built session (tests inject mocks here)
        """
        self._base_url = base_url.rstrip("/")
        self._strategies = strategies
        self._page_size = page_size
        self._timeout = timeout_seconds
        self._structured_object_types = list(structured_object_types or [])
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        if auth_token:
            self._session.headers.update({"Authorization": f"Bearer {auth_token}"})
        log.info(
            "source_client_initialized",
            base_url=self._base_url,
            page_size=page_size,
            structured_object_types=self._structured_object_types,
        )

    def iter_entities(self, kind: EntityKind) -> Iterator[SourceItem]:
        """
        Lazily yield every source entity of ``kind``.

        Records that fail to parse are yielded as InvalidSourceRecord so the
        caller can count them.

        Raises:
            FetchError: If a page cannot be fetched after retries or is malformed
        """
        strategy = self._strategies[kind]
        if kind == EntityKind.STRUCTURED_OBJECT:
            for object_type in self._structured_object_types:
                yield from self._iter_records(strategy, {"type": object_type})
        else:
            yield from self._iter_records(strategy, {})

    def _iter_records(
        self, strategy: "KindStrategy", params: dict[str, Any]
    ) -> Iterator[SourceItem]:
        cursor: str | None = None
        record_count = 0
        while True:
            page_params = {**params, "limit": self._page_size}
            if cursor:
                page_params["cursor"] = cursor
            body = self._get_page(strategy.endpoint, page_params)

            records = body.get(strategy.collection_key)
            if not isinstance(records, list):
                raise FetchError(
                    f"Source response for '{strategy.endpoint}' has no '{strategy.collection_key}' list"
                )

            for raw in records:
                record_count += 1
                yield self._parse(strategy, raw, params)

            page_info = body.get("pageInfo") or {}
            next_cursor = page_info.get("endCursor")
            if not page_info.get("hasNextPage") or not next_cursor:
                break
            if next_cursor == cursor:
                raise FetchError(f"Source pagination for '{strategy.endpoint}' did not advance")
            cursor = next_cursor

        log.info(
            "source_records_fetched",
            endpoint=strategy.endpoint,
            params=params,
            record_count=record_count,
        )

    def _parse(
        self, strategy: "KindStrategy", raw: Any, params: dict[str, Any]
    ) -> SourceItem:
        if not isinstance(raw, dict):
            return InvalidSourceRecord(strategy.kind, None, f"record is not an object: {raw!r}")
        if "type" in params:
            raw = {**raw, "type": raw.get("type") or params["type"]}
        try:
            return strategy.parse(raw)
        except Exception as e:
            external_id = raw.get(strategy.id_key)
            log.warning(
                "failed_to_parse_source_record",
                kind=strategy.kind.value,
                external_id=external_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return InvalidSourceRecord(
                strategy.kind, str(external_id) if external_id is not None else None, str(e)
            )

    def _get_page(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            body = self._fetch_page(endpoint, params)
        except RequestException as e:
            log.error("failed_to_fetch_source_page", endpoint=endpoint, params=params, error=str(e))
            raise FetchError(f"Failed to fetch source page '{endpoint}': {e}") from e
        except ValueError as e:
            raise FetchError(f"Source page '{endpoint}' is not valid JSON: {e}") from e

        if not isinstance(body, dict):
            raise FetchError(f"Source page '{endpoint}' is not a JSON object")
        if body.get("success") is False:
            raise FetchError(f"Source reported an unsuccessful response for '{endpoint}'")
        return body

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(HTTPError, Timeout, ConnectionError),
    )
    def _fetch_page(self, endpoint: str, params: dict[str, Any]) -> Any:
        response = self._session.get(
            f"{self._base_url}/api/{endpoint}",
            params=params,
            timeout=self._timeout,
        )
        response.raise_for_status()
        return response.json()
