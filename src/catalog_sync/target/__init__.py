"""Target platform access: transport, rate limiting and per-kind operations."""

from catalog_sync.target.graphql_transport import GraphQLTransport
from catalog_sync.target.platform import GraphQLTargetPlatform, MutationResult, TargetPlatform
from catalog_sync.target.rate_limited_client import GraphQLCall, GraphQLResponse, RateLimitedClient

__all__ = [
    "GraphQLTransport",
    "GraphQLCall",
    "GraphQLResponse",
    "RateLimitedClient",
    "GraphQLTargetPlatform",
    "MutationResult",
    "TargetPlatform",
]
