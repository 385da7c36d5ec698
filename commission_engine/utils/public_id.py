"""
Public-facing identifiers.

Public ids are opaque, URL-safe and prefixed with the entity kind so they
can be told apart in logs: comm_x8Fh..., rule_Q2k....
"""

import secrets

PUBLIC_ID_PREFIXES = {
    "commission": "comm",
    "commission_rule": "rule",
}


def generate_public_id(entity_kind: str) -> str:
    """
    Generate a public id for an entity kind.

    Uniqueness per kind is backed by the unique index on public_id.
    """
    prefix = PUBLIC_ID_PREFIXES.get(entity_kind)
    if prefix is None:
        raise ValueError(f"Unknown entity kind: {entity_kind}")
    return f"{prefix}_{secrets.token_urlsafe(16)}"
