"""
Gateway caching package.

Provides the key/value store client, the route cache policy and the
response cache used by the caching adapter. Entries are short-lived and
expire by TTL only; there is no explicit invalidation.
"""
