"""Utility functions for the campaign kernel."""

from campaign_kernel.utils.hashing import canonicalize_json, hash_bytes, hash_payload

__all__ = [
    "canonicalize_json",
    "hash_bytes",
    "hash_payload",
]
