"""
Adapters package for the Gateway Service.

Contains the caching adapter that connects inbound framework requests to
data handlers. The adapter encapsulates:

- Request normalization into the handler contract
- Response cache lookup and population
- Error handling that maps handler failures to 500 replies

Handlers never see cache state.
"""

from .edge_adapter import CachingAdapter, to_handler_request

__all__ = [
    "CachingAdapter",
    "to_handler_request",
]
