"""Per-kind sync strategies: natural keys, references, payload builders and ordering."""

import json
import mimetypes
import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, NamedTuple
from urllib.parse import urlparse

from catalog_sync.errors import ConfigurationError
from catalog_sync.models.config import SyncConfig
from catalog_sync.models.entity import EntityKind, SourceEntity, SourceField

DEFAULT_ORDER: tuple[EntityKind, ...] = (
    EntityKind.FILE,
    EntityKind.STRUCTURED_OBJECT,
    EntityKind.REDIRECT,
    EntityKind.DOCUMENT,
    EntityKind.COLLECTION,
    EntityKind.PRICE_RECORD,
)

DEFAULT_FIELD_TYPE = "single_line_text_field"
METAFIELD_PREFIX = "metafields."


class ReferenceField(NamedTuple):
    """Declares that a field holds external ids of another kind."""

    kind: EntityKind
    many: bool = False


REFERENCE_TYPE_KINDS: dict[str, EntityKind] = {
    "file_reference": EntityKind.FILE,
    "metaobject_reference": EntityKind.STRUCTURED_OBJECT,
    "page_reference": EntityKind.DOCUMENT,
    "collection_reference": EntityKind.COLLECTION,
}


def reference_from_type(type_tag: str) -> ReferenceField | None:
    """Map a semantic type tag such as ``list.file_reference`` to a reference declaration."""
    many = type_tag.startswith("list.")
    base = type_tag[len("list."):] if many else type_tag
    kind = REFERENCE_TYPE_KINDS.get(base)
    return ReferenceField(kind, many) if kind else None


def _typed_entries(list_key: str, entries: list[Any]) -> list[dict[str, Any]]:
    for index, item in enumerate(entries):
        if not isinstance(item, dict) or "key" not in item:
            raise ValueError(f"{list_key}[{index}] is not an object with a 'key': {item!r}")
    return entries


PayloadBuilder = Callable[[SourceEntity, dict[str, Any], SyncConfig], dict[str, Any]]


@dataclass(frozen=True)
class KindStrategy:
    """
    Everything kind-specific the generic reconciler and orchestrator need.

    Attributes:
        kind: Entity kind handled by this strategy
        endpoint: Source API path segment under ``/api/``
        collection_key: Key of the record list in a source response page
        natural_key: Extracts the natural key from a raw source record
        build_payload: Builds the target mutation input from resolved values
        depends_on: Kinds whose mappings must exist before this kind syncs
        reference_fields: Field keys holding references regardless of type tag
        lookup_key: Key used to search the target platform; defaults to the
            natural key
        id_key: Key of the external id in a raw source record
    """

    kind: EntityKind
    endpoint: str
    collection_key: str
    natural_key: Callable[[dict[str, Any]], str]
    build_payload: PayloadBuilder
    depends_on: tuple[EntityKind, ...] = ()
    reference_fields: dict[str, ReferenceField] = field(default_factory=dict)
    lookup_key: Callable[[SourceEntity, SyncConfig], str] | None = None
    id_key: str = "id"

    def parse(self, raw: dict[str, Any]) -> SourceEntity:
        """
        Convert a raw source record into a SourceEntity.

        Typed entries under ``fields`` keep their key and type; entries under
        ``metafields`` are keyed ``metafields.<namespace>.<key>``; every other
        top-level key becomes a plain field.

        Raises:
            ValueError: If the record has no external id or natural key, or a
                typed entry is not an object with a ``key``
        """
        external_id = raw.get(self.id_key)
        if external_id is None or str(external_id) == "":
            raise ValueError(f"{self.kind.value} record without '{self.id_key}'")

        fields: list[SourceField] = []
        for key, value in raw.items():
            if key == self.id_key:
                continue
            if key == "fields" and isinstance(value, list):
                fields.extend(
                    SourceField(
                        key=item["key"],
                        type=item.get("type") or DEFAULT_FIELD_TYPE,
                        value=item.get("value"),
                    )
                    for item in _typed_entries(key, value)
                )
            elif key == "metafields" and isinstance(value, list):
                fields.extend(
                    SourceField(
                        key=f"{METAFIELD_PREFIX}{item.get('namespace') or 'custom'}.{item['key']}",
                        type=item.get("type") or DEFAULT_FIELD_TYPE,
                        value=item.get("value"),
                    )
                    for item in _typed_entries(key, value)
                )
            else:
                type_tag = "json" if isinstance(value, (dict, list)) else DEFAULT_FIELD_TYPE
                fields.append(SourceField(key=key, type=type_tag, value=value))

        return SourceEntity(
            kind=self.kind,
            external_id=str(external_id),
            natural_key=self.natural_key(raw),
            fields=fields,
        )

    def reference_for(self, source_field: SourceField) -> ReferenceField | None:
        """Return the reference declaration for a field, or None for plain fields."""
        declared = self.reference_fields.get(source_field.key)
        if declared is not None:
            return declared
        return reference_from_type(source_field.type)

    def target_lookup_key(self, entity: SourceEntity, config: SyncConfig) -> str:
        if self.lookup_key is None:
            return entity.natural_key
        return self.lookup_key(entity, config)


def apply_text_replacements(value: Any, replacements: dict[str, str]) -> Any:
    """Apply literal substring replacements to a string; other values pass through."""
    if not isinstance(value, str) or not replacements:
        return value
    for search, replacement in replacements.items():
        if search:
            value = value.replace(search, replacement)
    return value


def encode_field_value(value: Any) -> str:
    """Encode a resolved value the way typed target fields expect it (JSON for lists)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _required(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"record without '{key}'")
    return str(value)


def _metafield_inputs(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> list[dict[str, Any]]:
    metafields = []
    for source_field in entity.fields:
        if not source_field.key.startswith(METAFIELD_PREFIX):
            continue
        namespace, _, key = source_field.key[len(METAFIELD_PREFIX):].partition(".")
        value = values.get(source_field.key)
        if reference_from_type(source_field.type) is None:
            value = apply_text_replacements(value, config.text_replacements)
        metafields.append(
            {
                "namespace": namespace,
                "key": key,
                "type": source_field.type,
                "value": encode_field_value(value),
            }
        )
    return metafields


# Files


def file_natural_key(raw: dict[str, Any]) -> str:
    filename = raw.get("filename")
    if filename:
        return str(filename)
    path = urlparse(_required(raw, "url")).path
    name = posixpath.basename(path)
    if not name:
        raise ValueError("file record without filename")
    return name


def file_content_type(filename: str, declared: str | None = None) -> str:
    """Target content type category: IMAGE, VIDEO or FILE."""
    if declared:
        return declared.upper()
    mime, _ = mimetypes.guess_type(filename)
    if mime and mime.startswith("image/"):
        return "IMAGE"
    if mime and mime.startswith("video/"):
        return "VIDEO"
    return "FILE"


def build_file_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    payload = {
        "originalSource": values.get("url"),
        "filename": entity.natural_key,
        "contentType": file_content_type(entity.natural_key, values.get("contentType")),
    }
    alt = values.get("alt")
    if alt:
        payload["alt"] = apply_text_replacements(alt, config.text_replacements)
    return payload


# Structured objects


def structured_object_natural_key(raw: dict[str, Any]) -> str:
    return f"{_required(raw, 'type')}:{_required(raw, 'handle')}"


def target_structured_object_type(source_type: str, config: SyncConfig) -> str:
    return config.structured_object_type_aliases.get(source_type, source_type)


def structured_object_lookup_key(entity: SourceEntity, config: SyncConfig) -> str:
    source_type, _, handle = entity.natural_key.partition(":")
    return f"{target_structured_object_type(source_type, config)}:{handle}"


def build_structured_object_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    source_type, _, handle = entity.natural_key.partition(":")
    fields = []
    for source_field in entity.fields:
        if source_field.key in ("type", "handle") or source_field.type == "json":
            continue
        value = values.get(source_field.key)
        if reference_from_type(source_field.type) is None:
            value = apply_text_replacements(value, config.text_replacements)
        fields.append({"key": source_field.key, "value": encode_field_value(value)})
    return {
        "type": target_structured_object_type(source_type, config),
        "handle": handle,
        "fields": fields,
    }


# Documents


def handle_natural_key(raw: dict[str, Any]) -> str:
    return _required(raw, "handle")


def build_document_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    replacements = config.text_replacements
    payload: dict[str, Any] = {
        "title": apply_text_replacements(values.get("title"), replacements),
        "handle": entity.natural_key,
        "body": apply_text_replacements(
            values.get("bodyHtml") or values.get("body") or "", replacements
        ),
        "isPublished": bool(values.get("isPublished", True)),
    }
    if values.get("templateSuffix"):
        payload["templateSuffix"] = values["templateSuffix"]
    metafields = _metafield_inputs(entity, values, config)
    if metafields:
        payload["metafields"] = metafields
    return payload


# Collections


def build_collection_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    replacements = config.text_replacements
    payload: dict[str, Any] = {
        "title": apply_text_replacements(values.get("title"), replacements),
        "handle": entity.natural_key,
        "descriptionHtml": apply_text_replacements(values.get("descriptionHtml") or "", replacements),
    }
    if values.get("sortOrder"):
        payload["sortOrder"] = values["sortOrder"]
    if values.get("templateSuffix"):
        payload["templateSuffix"] = values["templateSuffix"]
    rule_set = values.get("ruleSet")
    if isinstance(rule_set, dict):
        payload["ruleSet"] = {
            "appliedDisjunctively": bool(rule_set.get("appliedDisjunctively", False)),
            "rules": [
                {
                    "column": rule.get("column"),
                    "relation": rule.get("relation"),
                    "condition": rule.get("condition"),
                }
                for rule in rule_set.get("rules") or []
            ],
        }
    if values.get("image"):
        payload["image"] = {"id": values["image"]}
    metafields = _metafield_inputs(entity, values, config)
    if metafields:
        payload["metafields"] = metafields
    return payload


# Redirects


def redirect_natural_key(raw: dict[str, Any]) -> str:
    return _required(raw, "path")


def build_redirect_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    return {"path": entity.natural_key, "target": values.get("target")}


# Price records


def price_record_natural_key(raw: dict[str, Any]) -> str:
    """``sku:CURRENCY``; a SKU carries one fixed price per currency."""
    sku = _required(raw, "sku")
    currency = str(raw.get("currency") or "").upper()
    return f"{sku}:{currency}" if currency else sku


def _money(amount: Any, currency: str) -> dict[str, str] | None:
    if amount is None or amount == "":
        return None
    return {"amount": str(amount), "currencyCode": currency}


def build_price_record_payload(
    entity: SourceEntity, values: dict[str, Any], config: SyncConfig
) -> dict[str, Any]:
    currency = str(values.get("currency") or "").upper()
    payload: dict[str, Any] = {
        "sku": str(values.get("sku") or entity.natural_key.partition(":")[0]),
        "currency": currency,
        "price": _money(values.get("price"), currency),
    }
    compare_at = _money(values.get("compareAtPrice"), currency)
    if compare_at:
        payload["compareAtPrice"] = compare_at
    return payload


def default_strategies() -> dict[EntityKind, KindStrategy]:
    """Strategy table for every entity kind."""
    strategies = [
        KindStrategy(
            kind=EntityKind.FILE,
            endpoint="files",
            collection_key="files",
            natural_key=file_natural_key,
            build_payload=build_file_payload,
        ),
        KindStrategy(
            kind=EntityKind.STRUCTURED_OBJECT,
            endpoint="metaobjects",
            collection_key="metaobjects",
            natural_key=structured_object_natural_key,
            build_payload=build_structured_object_payload,
            depends_on=(EntityKind.FILE,),
            lookup_key=structured_object_lookup_key,
        ),
        KindStrategy(
            kind=EntityKind.REDIRECT,
            endpoint="redirects",
            collection_key="redirects",
            natural_key=redirect_natural_key,
            build_payload=build_redirect_payload,
        ),
        KindStrategy(
            kind=EntityKind.DOCUMENT,
            endpoint="pages",
            collection_key="pages",
            natural_key=handle_natural_key,
            build_payload=build_document_payload,
            depends_on=(EntityKind.FILE, EntityKind.STRUCTURED_OBJECT),
        ),
        KindStrategy(
            kind=EntityKind.COLLECTION,
            endpoint="collections",
            collection_key="collections",
            natural_key=handle_natural_key,
            build_payload=build_collection_payload,
            depends_on=(EntityKind.FILE, EntityKind.STRUCTURED_OBJECT),
            reference_fields={"image": ReferenceField(EntityKind.FILE)},
        ),
        KindStrategy(
            kind=EntityKind.PRICE_RECORD,
            endpoint="pricelists",
            collection_key="prices",
            natural_key=price_record_natural_key,
            build_payload=build_price_record_payload,
        ),
    ]
    return {strategy.kind: strategy for strategy in strategies}


def dependency_order(strategies: Iterable[KindStrategy]) -> list[EntityKind]:
    """
    Order kinds so every kind comes after the kinds it depends on.

    Kinds that are ready at the same time keep their position in DEFAULT_ORDER.

    Raises:
        ConfigurationError: If the declarations contain a cycle
    """
    by_kind = {strategy.kind: strategy for strategy in strategies}
    rank = {kind: index for index, kind in enumerate(DEFAULT_ORDER)}
    pending = {
        kind: {dep for dep in strategy.depends_on if dep in by_kind and dep != kind}
        for kind, strategy in by_kind.items()
    }

    order: list[EntityKind] = []
    while pending:
        ready = [kind for kind, deps in pending.items() if not deps]
        if not ready:
            raise ConfigurationError(
                f"Cyclic kind dependencies among: {sorted(k.value for k in pending)}"
            )
        # One at a time so a higher-ranked kind freed by this one can go next
        first = min(ready, key=lambda k: rank.get(k, len(rank)))
        order.append(first)
        del pending[first]
        for deps in pending.values():
            deps.discard(first)
    return order
