"""Index settings and mappings for identity documents.

Lookup fields (name, email address, phone number) are ``keyword`` fields with
a lowercase normalizer, so a ``term`` query matches the whole value exactly
and case-insensitively.  A text sub-field analyzed the same way (keyword
tokenizer + lowercase filter) is kept for ``match`` queries.

Elasticsearch 8 no longer has the ``_all`` catch-all field; the equivalent
guard is pinning ``index.query.default_field`` so that queries without an
explicit field never fan out across every field of the document.
"""

from __future__ import annotations

from typing import Any

LOWERCASE_KEYWORD = "lowercase_keyword"


def _lookup_keyword() -> dict[str, Any]:
    return {
        "type": "keyword",
        "normalizer": LOWERCASE_KEYWORD,
        "fields": {
            "analyzed": {"type": "text", "analyzer": LOWERCASE_KEYWORD},
        },
    }


def _opaque_keyword() -> dict[str, Any]:
    # Stored and returned, never searched
    return {"type": "keyword", "index": False, "doc_values": False}


def describe_index(shards: int = 1, replicas: int = 0) -> dict[str, Any]:
    """Return the ``{"settings", "mappings"}`` body used to create the index."""
    return {
        "settings": {
            "index": {
                "number_of_shards": shards,
                "number_of_replicas": replicas,
                "query": {"default_field": ["user_name"]},
            },
            "analysis": {
                "analyzer": {
                    LOWERCASE_KEYWORD: {
                        "type": "custom",
                        "tokenizer": "keyword",
                        "filter": ["lowercase"],
                    },
                },
                "normalizer": {
                    LOWERCASE_KEYWORD: {
                        "type": "custom",
                        "filter": ["lowercase"],
                    },
                },
            },
        },
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "user_name": _lookup_keyword(),
                "email": {
                    "properties": {
                        "address": _lookup_keyword(),
                        "confirmed": {"type": "boolean", "null_value": False},
                    },
                },
                "phone": {
                    "properties": {
                        "number": _lookup_keyword(),
                        "confirmed": {"type": "boolean", "null_value": False},
                    },
                },
                "credential": {
                    "properties": {
                        "password_hash": _opaque_keyword(),
                        "security_stamp": _opaque_keyword(),
                    },
                },
                "logins": {
                    "type": "nested",
                    "properties": {
                        "login_provider": {"type": "keyword"},
                        "provider_key": {"type": "keyword"},
                    },
                },
                "claims": {
                    "type": "nested",
                    "properties": {
                        "type": {"type": "keyword"},
                        "value": {"type": "keyword"},
                        "issuer": {"type": "keyword"},
                    },
                },
                "roles": {"type": "keyword"},
                "lockout": {
                    "properties": {
                        "end_date": {"type": "date"},
                        "access_failed_count": {"type": "integer"},
                        "enabled": {"type": "boolean"},
                    },
                },
                "two_factor_enabled": {"type": "boolean"},
            },
        },
    }
