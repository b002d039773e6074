"""Query routing over the three index tiers."""

from breslov_rag.retrieval.router import HierarchicalRouter, RouteOptions, truncate_chunk

__all__ = ["HierarchicalRouter", "RouteOptions", "truncate_chunk"]
