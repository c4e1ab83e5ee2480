"""Tests for per-kind strategies: parsing, payloads and dependency order.

Feature: catalog-sync
"""

import json

import pytest
import structlog
from hypothesis import given, settings, strategies as st

from catalog_sync.errors import ConfigurationError
from catalog_sync.models.config import SyncConfig
from catalog_sync.models.entity import EntityKind
from catalog_sync.sync.strategies import (
    DEFAULT_ORDER,
    KindStrategy,
    ReferenceField,
    apply_text_replacements,
    default_strategies,
    dependency_order,
    encode_field_value,
    file_content_type,
    reference_from_type,
)

log = structlog.stdlib.get_logger()

STRATEGIES = default_strategies()
CONFIG = SyncConfig(
    text_replacements={"Soundbox Store": "Quell Design"},
    structured_object_type_aliases={"meeting_rooms_features": "product_rooms_features"},
)


@given(st.permutations(list(default_strategies().values())))
@settings(max_examples=50, deadline=None)
def test_dependency_order_respects_declared_dependencies(strategies: list[KindStrategy]):
    """Property: Every kind comes after the kinds it depends on, whatever the input order."""
    log.info("test_dependency_order_respects_declared_dependencies")

    order = dependency_order(strategies)

    assert sorted(order, key=lambda k: k.value) == sorted(EntityKind, key=lambda k: k.value)
    for strategy in strategies:
        for dependency in strategy.depends_on:
            assert order.index(dependency) < order.index(strategy.kind), (
                f"{dependency.value} must sync before {strategy.kind.value}"
            )


def test_default_order_is_stable():
    """The built-in strategies sync files first and price records last."""
    assert dependency_order(STRATEGIES.values()) == list(DEFAULT_ORDER)


def test_dependency_cycle_is_a_configuration_error():
    """Mutually dependent kinds cannot be ordered."""
    files = STRATEGIES[EntityKind.FILE]
    objects = STRATEGIES[EntityKind.STRUCTURED_OBJECT]
    cyclic_files = KindStrategy(
        kind=files.kind,
        endpoint=files.endpoint,
        collection_key=files.collection_key,
        natural_key=files.natural_key,
        build_payload=files.build_payload,
        depends_on=(EntityKind.STRUCTURED_OBJECT,),
    )

    with pytest.raises(ConfigurationError):
        dependency_order([cyclic_files, objects])


def test_reference_from_type_tags():
    """Semantic type tags map to reference declarations."""
    assert reference_from_type("file_reference") == ReferenceField(EntityKind.FILE, False)
    assert reference_from_type("list.metaobject_reference") == ReferenceField(
        EntityKind.STRUCTURED_OBJECT, True
    )
    assert reference_from_type("single_line_text_field") is None
    assert reference_from_type("list.single_line_text_field") is None


def test_parse_splits_fields_and_metafields():
    """Typed fields keep their type, metafields get a namespaced key."""
    entity = STRATEGIES[EntityKind.DOCUMENT].parse(
        {
            "id": 17,
            "handle": "about",
            "title": "About",
            "seo": {"title": "About us"},
            "metafields": [
                {"namespace": "custom", "key": "hero", "type": "file_reference", "value": "F1"},
                {"key": "note", "value": "hi"},
            ],
        }
    )

    assert entity.external_id == "17"
    assert entity.natural_key == "about"
    assert entity.get_field("seo").type == "json"
    assert entity.get_field("metafields.custom.hero").type == "file_reference"
    assert entity.get_field("metafields.custom.note").type == "single_line_text_field"
    assert entity.get_field("id") is None


@pytest.mark.parametrize(
    "kind,raw",
    [
        (EntityKind.FILE, {"filename": "a.png"}),
        (EntityKind.DOCUMENT, {"id": "D1"}),
        (EntityKind.STRUCTURED_OBJECT, {"id": "M1", "handle": "x"}),
        (EntityKind.REDIRECT, {"id": "R1", "target": "/new"}),
        (EntityKind.PRICE_RECORD, {"id": "P1", "price": "10"}),
    ],
)
def test_parse_rejects_records_without_identity(kind: EntityKind, raw: dict):
    """Records missing the external id or the natural key are invalid."""
    with pytest.raises(ValueError):
        STRATEGIES[kind].parse(raw)


@pytest.mark.parametrize(
    "raw",
    [
        {"id": "D1", "handle": "about", "fields": ["oops"]},
        {"id": "D1", "handle": "about", "fields": [{"type": "url", "value": "x"}]},
        {"id": "D1", "handle": "about", "metafields": [None]},
        {"id": "D1", "handle": "about", "metafields": [["custom", "hero"]]},
    ],
)
def test_parse_rejects_malformed_typed_entries(raw: dict):
    """Entries under fields and metafields must be objects with a key."""
    with pytest.raises(ValueError) as exc_info:
        STRATEGIES[EntityKind.DOCUMENT].parse(raw)

    assert "fields[0]" in str(exc_info.value)


def test_file_natural_key_falls_back_to_url_basename():
    """A file without a filename is keyed by the last URL path segment."""
    entity = STRATEGIES[EntityKind.FILE].parse(
        {"id": "F1", "url": "https://cdn.example.com/media/hero.png?v=3"}
    )

    assert entity.natural_key == "hero.png"


def test_file_payload():
    """File payloads carry source URL, filename, content type and rebranded alt text."""
    strategy = STRATEGIES[EntityKind.FILE]
    entity = strategy.parse(
        {
            "id": "F1",
            "filename": "showroom.mp4",
            "url": "https://cdn.example.com/showroom.mp4",
            "alt": "Soundbox Store showroom",
        }
    )

    payload = strategy.build_payload(entity, {f.key: f.value for f in entity.fields}, CONFIG)

    assert payload == {
        "originalSource": "https://cdn.example.com/showroom.mp4",
        "filename": "showroom.mp4",
        "contentType": "VIDEO",
        "alt": "Quell Design showroom",
    }


def test_file_content_type():
    assert file_content_type("a.png") == "IMAGE"
    assert file_content_type("a.pdf") == "FILE"
    assert file_content_type("a.bin", "image") == "IMAGE"


def test_structured_object_payload_applies_type_alias():
    """The target type comes from the alias table, and the lookup key follows it."""
    strategy = STRATEGIES[EntityKind.STRUCTURED_OBJECT]
    entity = strategy.parse(
        {
            "id": "M1",
            "type": "meeting_rooms_features",
            "handle": "acoustics",
            "fields": [
                {"key": "title", "value": "Soundbox Store acoustics"},
                {"key": "icon", "type": "file_reference", "value": "F1"},
                {"key": "rooms", "type": "list.metaobject_reference", "value": ["M2"]},
            ],
        }
    )
    values = {f.key: f.value for f in entity.fields}
    values.update({"icon": "gid://file/1", "rooms": ["gid://metaobject/2"]})

    payload = strategy.build_payload(entity, values, CONFIG)

    assert entity.natural_key == "meeting_rooms_features:acoustics"
    assert strategy.target_lookup_key(entity, CONFIG) == "product_rooms_features:acoustics"
    assert payload["type"] == "product_rooms_features"
    assert payload["handle"] == "acoustics"
    assert payload["fields"] == [
        {"key": "title", "value": "Quell Design acoustics"},
        {"key": "icon", "value": "gid://file/1"},
        {"key": "rooms", "value": json.dumps(["gid://metaobject/2"])},
    ]


def test_document_payload_with_metafields():
    """Document payloads carry body, publication state and encoded metafields."""
    strategy = STRATEGIES[EntityKind.DOCUMENT]
    entity = strategy.parse(
        {
            "id": "D1",
            "handle": "about",
            "title": "About Soundbox Store",
            "bodyHtml": "<p>Sound box Store</p>",
            "isPublished": False,
            "metafields": [
                {"namespace": "custom", "key": "hero", "type": "file_reference", "value": "F1"}
            ],
        }
    )
    values = {f.key: f.value for f in entity.fields}
    values["metafields.custom.hero"] = "gid://file/1"
    config = SyncConfig(
        text_replacements={"Soundbox Store": "Quell Design", "Sound box Store": "Quell Design"}
    )

    payload = strategy.build_payload(entity, values, config)

    assert payload["title"] == "About Quell Design"
    assert payload["body"] == "<p>Quell Design</p>"
    assert payload["isPublished"] is False
    assert payload["metafields"] == [
        {"namespace": "custom", "key": "hero", "type": "file_reference", "value": "gid://file/1"}
    ]


def test_collection_payload_with_rule_set_and_image():
    strategy = STRATEGIES[EntityKind.COLLECTION]
    entity = strategy.parse(
        {
            "id": "C1",
            "handle": "sofas",
            "title": "Sofas",
            "sortOrder": "BEST_SELLING",
            "image": "F1",
            "ruleSet": {
                "appliedDisjunctively": True,
                "rules": [{"column": "TAG", "relation": "EQUALS", "condition": "sofa"}],
            },
        }
    )
    values = {f.key: f.value for f in entity.fields}
    values["image"] = "gid://file/1"

    payload = strategy.build_payload(entity, values, CONFIG)

    assert payload["handle"] == "sofas"
    assert payload["sortOrder"] == "BEST_SELLING"
    assert payload["image"] == {"id": "gid://file/1"}
    assert payload["ruleSet"] == {
        "appliedDisjunctively": True,
        "rules": [{"column": "TAG", "relation": "EQUALS", "condition": "sofa"}],
    }
    assert "metafields" not in payload


def test_redirect_and_price_record_payloads():
    redirects = STRATEGIES[EntityKind.REDIRECT]
    redirect = redirects.parse({"id": "R1", "path": "/old", "target": "/new"})
    assert redirects.build_payload(redirect, {"target": "/new"}, CONFIG) == {
        "path": "/old",
        "target": "/new",
    }

    prices = STRATEGIES[EntityKind.PRICE_RECORD]
    price = prices.parse(
        {"id": "P1", "sku": "SOFA-1", "currency": "eur", "price": "999.00", "compareAtPrice": "1200"}
    )
    payload = prices.build_payload(price, {f.key: f.value for f in price.fields}, CONFIG)

    assert price.natural_key == "SOFA-1:EUR"
    assert payload == {
        "sku": "SOFA-1",
        "currency": "EUR",
        "price": {"amount": "999.00", "currencyCode": "EUR"},
        "compareAtPrice": {"amount": "1200", "currencyCode": "EUR"},
    }


def test_value_encoding_and_replacements():
    assert encode_field_value(None) == ""
    assert encode_field_value(True) == "true"
    assert encode_field_value(["a", "b"]) == '["a", "b"]'
    assert encode_field_value(3) == "3"
    assert apply_text_replacements(5, {"a": "b"}) == 5
    assert apply_text_replacements("abc", {"": "x", "b": "B"}) == "aBc"
