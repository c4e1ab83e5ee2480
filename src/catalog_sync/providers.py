"""Factory functions wiring the sync engine from configuration.

Each function builds one collaborator. Replace a function's body to swap
an implementation (for example a different mapping store backend) without
touching the engine.
"""

import threading

import structlog

from catalog_sync.ingestion.source_client import HttpSourceClient
from catalog_sync.models.config import AppConfig, SourceConfig, SyncConfig, TargetConfig
from catalog_sync.models.entity import EntityKind
from catalog_sync.storage import MappingStores, build_stores
from catalog_sync.sync.orchestrator import SyncOrchestrator
from catalog_sync.sync.strategies import (
    KindStrategy,
    default_strategies,
    target_structured_object_type,
)
from catalog_sync.target.graphql_transport import GraphQLTransport
from catalog_sync.target.platform import GraphQLTargetPlatform
from catalog_sync.target.rate_limited_client import RateLimitedClient

log = structlog.stdlib.get_logger()


def get_source_client(
    source_config: SourceConfig, strategies: dict[EntityKind, KindStrategy]
) -> HttpSourceClient:
    """Build the HTTP client for the source-of-truth API."""
    return HttpSourceClient(
        base_url=str(source_config.base_url),
        strategies=strategies,
        auth_token=source_config.auth_token,
        page_size=source_config.page_size,
        timeout_seconds=source_config.timeout_seconds,
        structured_object_types=source_config.structured_object_types,
    )


def get_target_platform(
    target_config: TargetConfig,
    sync_config: SyncConfig,
    structured_object_types: list[str],
) -> GraphQLTargetPlatform:
    """
    Build the GraphQL target platform behind a rate-limited client.

    Args:
        target_config: Target endpoint and credentials
        sync_config: Pacing and retry settings
        structured_object_types: Source structured object types; aliases are
            applied to get the target types to enumerate

    Returns:
        GraphQLTargetPlatform instance
    """
    transport = GraphQLTransport(
        endpoint=target_config.endpoint,
        access_token=target_config.access_token,
        timeout_seconds=target_config.timeout_seconds,
    )
    client = RateLimitedClient(transport, sync_config)
    target_types = sorted(
        {target_structured_object_type(t, sync_config) for t in structured_object_types}
    )
    log.info(
        "target_platform_initialized",
        endpoint=target_config.endpoint,
        structured_object_types=target_types,
    )
    return GraphQLTargetPlatform(client, structured_object_types=target_types)


def get_orchestrator(
    config: AppConfig,
    stores: MappingStores | None = None,
    cancel_event: threading.Event | None = None,
) -> SyncOrchestrator:
    """
    Build a fully wired orchestrator from application configuration.

    Args:
        config: Application configuration
        stores: Optional mapping stores (built from ``config.store`` if None)
        cancel_event: Optional event that cancels the run when set

    Returns:
        SyncOrchestrator ready to run
    """
    strategies = default_strategies()
    return SyncOrchestrator(
        source=get_source_client(config.source, strategies),
        target=get_target_platform(
            config.target, config.sync, config.source.structured_object_types
        ),
        stores=stores or build_stores(config.store),
        strategies=strategies,
        config=config.sync,
        cancel_event=cancel_event,
    )
