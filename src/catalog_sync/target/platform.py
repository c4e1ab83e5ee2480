"""Target platform boundary and its GraphQL implementation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol

import structlog

from catalog_sync.errors import FetchError, SyncError, TargetApiError
from catalog_sync.models.entity import EntityKind
from catalog_sync.target.rate_limited_client import GraphQLCall, RateLimitedClient

log = structlog.stdlib.get_logger()

PAGE_SIZE = 250


@dataclass
class MutationResult:
    """Outcome of a create, update or delete. An empty error list means success."""

    target_id: str | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class TargetPlatform(Protocol):
    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> str | None: ...

    def iter_target_ids(self, kind: EntityKind) -> Iterator[str]: ...

    def create(self, kind: EntityKind, payload: dict[str, Any]) -> MutationResult: ...

    def update(self, kind: EntityKind, target_id: str, payload: dict[str, Any]) -> MutationResult: ...

    def delete(self, kind: EntityKind, target_id: str) -> MutationResult: ...


def dig(data: Any, path: tuple[str | int, ...]) -> Any:
    """Follow a path of keys and list indexes, returning None where it breaks."""
    for step in path:
        if isinstance(step, int):
            if not isinstance(data, list) or len(data) <= step:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[step] if isinstance(step, int) else data.get(step)
    return data


@dataclass(frozen=True)
class KindOperations:
    """GraphQL documents and variable shapes for one kind."""

    lookup_query: str
    lookup_variables: Callable[[str], dict[str, Any]]
    lookup_id_path: tuple[str | int, ...]
    list_query: str
    list_root: str
    create_mutation: str
    create_variables: Callable[[dict[str, Any]], dict[str, Any]]
    create_root: str
    create_id_path: tuple[str | int, ...]
    update_mutation: str
    update_variables: Callable[[str, dict[str, Any]], dict[str, Any]]
    update_root: str
    delete_mutation: str
    delete_variables: Callable[[str], dict[str, Any]]
    delete_root: str


class KindHandler(ABC):
    """Runs the operations of one kind through the rate-limited client."""

    def __init__(self, kind: EntityKind, client: RateLimitedClient):
        self.kind = kind
        self.client = client

    def _execute(self, name: str, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = self.client.execute(GraphQLCall(query=query, variables=variables, name=name))
        return response.data

    def _mutation_result(
        self, data: dict[str, Any], root: str, id_path: tuple[str | int, ...] | None
    ) -> MutationResult:
        payload = data.get(root)
        if not isinstance(payload, dict):
            raise TargetApiError(f"Response for {root} carried no payload")
        errors = payload.get("userErrors") or []
        if errors:
            return MutationResult(errors=errors)
        target_id = dig(payload, id_path) if id_path else None
        return MutationResult(target_id=target_id)

    def _paginate(
        self, query: str, root: str, variables: dict[str, Any] | None = None
    ) -> Iterator[str]:
        after = None
        while True:
            data = self._execute(
                f"{root}_page", query, {"first": PAGE_SIZE, "after": after, **(variables or {})}
            )
            connection = data.get(root)
            if not isinstance(connection, dict):
                raise FetchError(f"Enumeration of {root} returned no connection")
            for node in connection.get("nodes") or []:
                if node and node.get("id"):
                    yield node["id"]
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            after = page_info.get("endCursor")

    @abstractmethod
    def find_by_natural_key(self, natural_key: str) -> str | None: ...

    @abstractmethod
    def iter_target_ids(self) -> Iterator[str]: ...

    @abstractmethod
    def create(self, payload: dict[str, Any]) -> MutationResult: ...

    @abstractmethod
    def update(self, target_id: str, payload: dict[str, Any]) -> MutationResult: ...

    @abstractmethod
    def delete(self, target_id: str) -> MutationResult: ...


class TemplateHandler(KindHandler):
    """Handler driven entirely by a KindOperations table entry."""

    def __init__(self, kind: EntityKind, client: RateLimitedClient, operations: KindOperations):
        super().__init__(kind, client)
        self.operations = operations

    def find_by_natural_key(self, natural_key: str) -> str | None:
        ops = self.operations
        data = self._execute(
            f"{self.kind.value}_lookup", ops.lookup_query, ops.lookup_variables(natural_key)
        )
        return dig(data, ops.lookup_id_path)

    def iter_target_ids(self) -> Iterator[str]:
        return self._paginate(self.operations.list_query, self.operations.list_root)

    def create(self, payload: dict[str, Any]) -> MutationResult:
        ops = self.operations
        data = self._execute(ops.create_root, ops.create_mutation, ops.create_variables(payload))
        return self._mutation_result(data, ops.create_root, ops.create_id_path)

    def update(self, target_id: str, payload: dict[str, Any]) -> MutationResult:
        ops = self.operations
        data = self._execute(
            ops.update_root, ops.update_mutation, ops.update_variables(target_id, payload)
        )
        result = self._mutation_result(data, ops.update_root, None)
        if result.ok:
            result.target_id = target_id
        return result

    def delete(self, target_id: str) -> MutationResult:
        ops = self.operations
        data = self._execute(ops.delete_root, ops.delete_mutation, ops.delete_variables(target_id))
        result = self._mutation_result(data, ops.delete_root, None)
        if result.ok:
            result.target_id = target_id
        return result


class StructuredObjectHandler(TemplateHandler):
    """Structured objects are enumerated one type at a time."""

    def __init__(
        self,
        client: RateLimitedClient,
        operations: KindOperations,
        object_types: list[str],
    ):
        super().__init__(EntityKind.STRUCTURED_OBJECT, client, operations)
        self.object_types = object_types

    def iter_target_ids(self) -> Iterator[str]:
        for object_type in self.object_types:
            yield from self._paginate(
                self.operations.list_query, self.operations.list_root, {"type": object_type}
            )


FILES_LOOKUP = """
query fileByName($query: String!) {
  files(first: 1, query: $query) { nodes { id } }
}
"""

FILES_LIST = """
query listFiles($first: Int!, $after: String) {
  files(first: $first, after: $after) { nodes { id } pageInfo { hasNextPage endCursor } }
}
"""

FILE_CREATE = """
mutation fileCreate($files: [FileCreateInput!]!) {
  fileCreate(files: $files) { files { id } userErrors { field message } }
}
"""

FILE_UPDATE = """
mutation fileUpdate($files: [FileUpdateInput!]!) {
  fileUpdate(files: $files) { files { id } userErrors { field message } }
}
"""

FILE_DELETE = """
mutation fileDelete($fileIds: [ID!]!) {
  fileDelete(fileIds: $fileIds) { deletedFileIds userErrors { field message } }
}
"""

METAOBJECT_LOOKUP = """
query metaobjectByHandle($handle: MetaobjectHandleInput!) {
  metaobjectByHandle(handle: $handle) { id }
}
"""

METAOBJECTS_LIST = """
query listMetaobjects($type: String!, $first: Int!, $after: String) {
  metaobjects(type: $type, first: $first, after: $after) {
    nodes { id } pageInfo { hasNextPage endCursor }
  }
}
"""

METAOBJECT_CREATE = """
mutation metaobjectCreate($metaobject: MetaobjectCreateInput!) {
  metaobjectCreate(metaobject: $metaobject) { metaobject { id } userErrors { field message } }
}
"""

METAOBJECT_UPDATE = """
mutation metaobjectUpdate($id: ID!, $metaobject: MetaobjectUpdateInput!) {
  metaobjectUpdate(id: $id, metaobject: $metaobject) { metaobject { id } userErrors { field message } }
}
"""

METAOBJECT_DELETE = """
mutation metaobjectDelete($id: ID!) {
  metaobjectDelete(id: $id) { deletedId userErrors { field message } }
}
"""

PAGE_LOOKUP = """
query pageByHandle($query: String!) {
  pages(first: 1, query: $query) { nodes { id } }
}
"""

PAGES_LIST = """
query listPages($first: Int!, $after: String) {
  pages(first: $first, after: $after) { nodes { id } pageInfo { hasNextPage endCursor } }
}
"""

PAGE_CREATE = """
mutation pageCreate($page: PageCreateInput!) {
  pageCreate(page: $page) { page { id } userErrors { field message } }
}
"""

PAGE_UPDATE = """
mutation pageUpdate($id: ID!, $page: PageUpdateInput!) {
  pageUpdate(id: $id, page: $page) { page { id } userErrors { field message } }
}
"""

PAGE_DELETE = """
mutation pageDelete($id: ID!) {
  pageDelete(id: $id) { deletedPageId userErrors { field message } }
}
"""

COLLECTION_LOOKUP = """
query collectionByHandle($handle: String!) {
  collectionByHandle(handle: $handle) { id }
}
"""

COLLECTIONS_LIST = """
query listCollections($first: Int!, $after: String) {
  collections(first: $first, after: $after) { nodes { id } pageInfo { hasNextPage endCursor } }
}
"""

COLLECTION_CREATE = """
mutation collectionCreate($input: CollectionInput!) {
  collectionCreate(input: $input) { collection { id } userErrors { field message } }
}
"""

COLLECTION_UPDATE = """
mutation collectionUpdate($input: CollectionInput!) {
  collectionUpdate(input: $input) { collection { id } userErrors { field message } }
}
"""

COLLECTION_DELETE = """
mutation collectionDelete($input: CollectionDeleteInput!) {
  collectionDelete(input: $input) { deletedCollectionId userErrors { field message } }
}
"""

REDIRECT_LOOKUP = """
query redirectByPath($query: String!) {
  urlRedirects(first: 1, query: $query) { nodes { id } }
}
"""

REDIRECTS_LIST = """
query listRedirects($first: Int!, $after: String) {
  urlRedirects(first: $first, after: $after) { nodes { id } pageInfo { hasNextPage endCursor } }
}
"""

REDIRECT_CREATE = """
mutation urlRedirectCreate($urlRedirect: UrlRedirectInput!) {
  urlRedirectCreate(urlRedirect: $urlRedirect) { urlRedirect { id } userErrors { field message } }
}
"""

REDIRECT_UPDATE = """
mutation urlRedirectUpdate($id: ID!, $urlRedirect: UrlRedirectInput!) {
  urlRedirectUpdate(id: $id, urlRedirect: $urlRedirect) { urlRedirect { id } userErrors { field message } }
}
"""

REDIRECT_DELETE = """
mutation urlRedirectDelete($id: ID!) {
  urlRedirectDelete(id: $id) { deletedUrlRedirectId userErrors { field message } }
}
"""


def _search_term(field_name: str, value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{field_name}:"{escaped}"'


def _metaobject_handle(natural_key: str) -> dict[str, Any]:
    object_type, _, handle = natural_key.partition(":")
    return {"handle": {"type": object_type, "handle": handle}}


def _without(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in keys}


OPERATIONS: dict[EntityKind, KindOperations] = {
    EntityKind.FILE: KindOperations(
        lookup_query=FILES_LOOKUP,
        lookup_variables=lambda key: {"query": _search_term("filename", key)},
        lookup_id_path=("files", "nodes", 0, "id"),
        list_query=FILES_LIST,
        list_root="files",
        create_mutation=FILE_CREATE,
        create_variables=lambda payload: {"files": [payload]},
        create_root="fileCreate",
        create_id_path=("files", 0, "id"),
        update_mutation=FILE_UPDATE,
        update_variables=lambda target_id, payload: {
            "files": [{"id": target_id, **_without(payload, "contentType")}]
        },
        update_root="fileUpdate",
        delete_mutation=FILE_DELETE,
        delete_variables=lambda target_id: {"fileIds": [target_id]},
        delete_root="fileDelete",
    ),
    EntityKind.STRUCTURED_OBJECT: KindOperations(
        lookup_query=METAOBJECT_LOOKUP,
        lookup_variables=_metaobject_handle,
        lookup_id_path=("metaobjectByHandle", "id"),
        list_query=METAOBJECTS_LIST,
        list_root="metaobjects",
        create_mutation=METAOBJECT_CREATE,
        create_variables=lambda payload: {"metaobject": payload},
        create_root="metaobjectCreate",
        create_id_path=("metaobject", "id"),
        update_mutation=METAOBJECT_UPDATE,
        update_variables=lambda target_id, payload: {
            "id": target_id,
            "metaobject": _without(payload, "type"),
        },
        update_root="metaobjectUpdate",
        delete_mutation=METAOBJECT_DELETE,
        delete_variables=lambda target_id: {"id": target_id},
        delete_root="metaobjectDelete",
    ),
    EntityKind.DOCUMENT: KindOperations(
        lookup_query=PAGE_LOOKUP,
        lookup_variables=lambda key: {"query": _search_term("handle", key)},
        lookup_id_path=("pages", "nodes", 0, "id"),
        list_query=PAGES_LIST,
        list_root="pages",
        create_mutation=PAGE_CREATE,
        create_variables=lambda payload: {"page": payload},
        create_root="pageCreate",
        create_id_path=("page", "id"),
        update_mutation=PAGE_UPDATE,
        update_variables=lambda target_id, payload: {"id": target_id, "page": payload},
        update_root="pageUpdate",
        delete_mutation=PAGE_DELETE,
        delete_variables=lambda target_id: {"id": target_id},
        delete_root="pageDelete",
    ),
    EntityKind.COLLECTION: KindOperations(
        lookup_query=COLLECTION_LOOKUP,
        lookup_variables=lambda key: {"handle": key},
        lookup_id_path=("collectionByHandle", "id"),
        list_query=COLLECTIONS_LIST,
        list_root="collections",
        create_mutation=COLLECTION_CREATE,
        create_variables=lambda payload: {"input": payload},
        create_root="collectionCreate",
        create_id_path=("collection", "id"),
        update_mutation=COLLECTION_UPDATE,
        update_variables=lambda target_id, payload: {"input": {**payload, "id": target_id}},
        update_root="collectionUpdate",
        delete_mutation=COLLECTION_DELETE,
        delete_variables=lambda target_id: {"input": {"id": target_id}},
        delete_root="collectionDelete",
    ),
    EntityKind.REDIRECT: KindOperations(
        lookup_query=REDIRECT_LOOKUP,
        lookup_variables=lambda key: {"query": _search_term("path", key)},
        lookup_id_path=("urlRedirects", "nodes", 0, "id"),
        list_query=REDIRECTS_LIST,
        list_root="urlRedirects",
        create_mutation=REDIRECT_CREATE,
        create_variables=lambda payload: {"urlRedirect": payload},
        create_root="urlRedirectCreate",
        create_id_path=("urlRedirect", "id"),
        update_mutation=REDIRECT_UPDATE,
        update_variables=lambda target_id, payload: {"id": target_id, "urlRedirect": payload},
        update_root="urlRedirectUpdate",
        delete_mutation=REDIRECT_DELETE,
        delete_variables=lambda target_id: {"id": target_id},
        delete_root="urlRedirectDelete",
    ),
}


PRICE_LISTS_QUERY = """
query priceLists {
  priceLists(first: 50) { nodes { id currency } }
}
"""

VARIANT_BY_SKU = """
query variantBySku($query: String!) {
  productVariants(first: 1, query: $query) { nodes { id } }
}
"""

PRICE_LIST_PRICES = """
query priceListPrices($id: ID!, $first: Int!, $after: String) {
  priceList(id: $id) {
    prices(first: $first, after: $after, originType: FIXED) {
      nodes { variant { id } } pageInfo { hasNextPage endCursor }
    }
  }
}
"""

PRICE_LIST_FIXED_PRICES_ADD = """
mutation priceListFixedPricesAdd($priceListId: ID!, $prices: [PriceListPriceInput!]!) {
  priceListFixedPricesAdd(priceListId: $priceListId, prices: $prices) {
    prices { price { amount currencyCode } }
    userErrors { field code message }
  }
}
"""

PRICE_LIST_FIXED_PRICES_DELETE = """
mutation priceListFixedPricesDelete($priceListId: ID!, $variantIds: [ID!]!) {
  priceListFixedPricesDelete(priceListId: $priceListId, variantIds: $variantIds) {
    deletedFixedPriceVariantIds
    userErrors { field code message }
  }
}
"""

PRICE_TARGET_SEPARATOR = "|"


class PriceRecordHandler(KindHandler):
    """
    Fixed prices on currency price lists.

    A price record's target id joins the price list id and the variant id,
    since a variant carries one fixed price per price list.
    """

    def __init__(self, client: RateLimitedClient):
        super().__init__(EntityKind.PRICE_RECORD, client)
        self._price_lists: dict[str, str] | None = None

    def price_lists(self) -> dict[str, str]:
        """Currency code -> price list id, fetched once per handler."""
        if self._price_lists is None:
            data = self._execute("price_lists", PRICE_LISTS_QUERY, {})
            nodes = dig(data, ("priceLists", "nodes")) or []
            self._price_lists = {node["currency"]: node["id"] for node in nodes}
            log.info("price_lists_loaded", currencies=sorted(self._price_lists))
        return self._price_lists

    def _variant_id(self, sku: str) -> str | None:
        data = self._execute("variant_by_sku", VARIANT_BY_SKU, {"query": _search_term("sku", sku)})
        return dig(data, ("productVariants", "nodes", 0, "id"))

    def _split(self, target_id: str) -> tuple[str, str]:
        price_list_id, _, variant_id = target_id.partition(PRICE_TARGET_SEPARATOR)
        if not variant_id:
            raise TargetApiError(f"Malformed price record target id: {target_id}")
        return price_list_id, variant_id

    def find_by_natural_key(self, natural_key: str) -> str | None:
        sku, _, currency = natural_key.partition(":")
        price_list_id = self.price_lists().get(currency.upper())
        if price_list_id is None:
            return None
        variant_id = self._variant_id(sku)
        if variant_id is None:
            return None
        return f"{price_list_id}{PRICE_TARGET_SEPARATOR}{variant_id}"

    def iter_target_ids(self) -> Iterator[str]:
        for price_list_id in self.price_lists().values():
            after = None
            while True:
                data = self._execute(
                    "price_list_prices",
                    PRICE_LIST_PRICES,
                    {"id": price_list_id, "first": PAGE_SIZE, "after": after},
                )
                connection = dig(data, ("priceList", "prices"))
                if not isinstance(connection, dict):
                    raise FetchError(f"Enumeration of price list {price_list_id} failed")
                for node in connection.get("nodes") or []:
                    variant_id = dig(node, ("variant", "id"))
                    if variant_id:
                        yield f"{price_list_id}{PRICE_TARGET_SEPARATOR}{variant_id}"
                page_info = connection.get("pageInfo") or {}
                if not page_info.get("hasNextPage"):
                    break
                after = page_info.get("endCursor")

    def _add_price(self, price_list_id: str, variant_id: str, payload: dict[str, Any]) -> MutationResult:
        price: dict[str, Any] = {"variantId": variant_id, "price": payload.get("price")}
        if payload.get("compareAtPrice"):
            price["compareAtPrice"] = payload["compareAtPrice"]
        data = self._execute(
            "priceListFixedPricesAdd",
            PRICE_LIST_FIXED_PRICES_ADD,
            {"priceListId": price_list_id, "prices": [price]},
        )
        result = self._mutation_result(data, "priceListFixedPricesAdd", None)
        if result.ok:
            result.target_id = f"{price_list_id}{PRICE_TARGET_SEPARATOR}{variant_id}"
        return result

    def create(self, payload: dict[str, Any]) -> MutationResult:
        currency = payload.get("currency") or ""
        price_list_id = self.price_lists().get(currency)
        if price_list_id is None:
            return MutationResult(
                errors=[{"field": ["currency"], "message": f"No price list for currency '{currency}'"}]
            )
        variant_id = self._variant_id(payload["sku"])
        if variant_id is None:
            return MutationResult(
                errors=[{"field": ["sku"], "message": f"No variant with SKU '{payload['sku']}'"}]
            )
        return self._add_price(price_list_id, variant_id, payload)

    def update(self, target_id: str, payload: dict[str, Any]) -> MutationResult:
        price_list_id, variant_id = self._split(target_id)
        return self._add_price(price_list_id, variant_id, payload)

    def delete(self, target_id: str) -> MutationResult:
        price_list_id, variant_id = self._split(target_id)
        data = self._execute(
            "priceListFixedPricesDelete",
            PRICE_LIST_FIXED_PRICES_DELETE,
            {"priceListId": price_list_id, "variantIds": [variant_id]},
        )
        result = self._mutation_result(data, "priceListFixedPricesDelete", None)
        if result.ok:
            result.target_id = target_id
        return result


class GraphQLTargetPlatform:
    """TargetPlatform over the rate-limited GraphQL client."""

    def __init__(
        self,
        client: RateLimitedClient,
        structured_object_types: list[str] | None = None,
    ):
        """
        Args:
            client: Rate-limited client for the admin API
            structured_object_types: Target structured object types to enumerate
        """
        self.client = client
        self.handlers: dict[EntityKind, KindHandler] = {
            kind: TemplateHandler(kind, client, operations)
            for kind, operations in OPERATIONS.items()
            if kind != EntityKind.STRUCTURED_OBJECT
        }
        self.handlers[EntityKind.STRUCTURED_OBJECT] = StructuredObjectHandler(
            client, OPERATIONS[EntityKind.STRUCTURED_OBJECT], list(structured_object_types or [])
        )
        self.handlers[EntityKind.PRICE_RECORD] = PriceRecordHandler(client)

    def _handler(self, kind: EntityKind) -> KindHandler:
        handler = self.handlers.get(kind)
        if handler is None:
            raise SyncError(f"No target operations for kind '{kind.value}'")
        return handler

    def find_by_natural_key(self, kind: EntityKind, natural_key: str) -> str | None:
        target_id = self._handler(kind).find_by_natural_key(natural_key)
        log.debug(
            "target_lookup_by_natural_key",
            kind=kind.value,
            natural_key=natural_key,
            found=target_id is not None,
        )
        return target_id

    def iter_target_ids(self, kind: EntityKind) -> Iterator[str]:
        return self._handler(kind).iter_target_ids()

    def create(self, kind: EntityKind, payload: dict[str, Any]) -> MutationResult:
        return self._handler(kind).create(payload)

    def update(self, kind: EntityKind, target_id: str, payload: dict[str, Any]) -> MutationResult:
        return self._handler(kind).update(target_id, payload)

    def delete(self, kind: EntityKind, target_id: str) -> MutationResult:
        return self._handler(kind).delete(target_id)
