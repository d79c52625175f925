"""Keyword text helpers shared by the store and the reconciler."""

import uuid

# Namespace for deterministic keyword row ids
KEYWORD_NAMESPACE = uuid.UUID("4f0c7c1e-3b8a-4d59-9a4e-5d3b2f6a9c10")


def normalize_keyword(tag: str) -> str:
    """Lowercase, trimmed, single-spaced form used for duplicate detection."""
    if not tag:
        return ""
    return " ".join(str(tag).lower().split())


def keyword_stat_id(scope_id: str, tag: str, is_competition: bool = False) -> str:
    """
    Stable id for a keyword row within its scope.

    The scope is the evaluation for pool rows and the listing for competitor
    rows. Re-inserting the same keyword set produces the same ids.
    """
    kind = "competition" if is_competition else "pool"
    name = f"{scope_id}:{kind}:{normalize_keyword(tag)}"
    return str(uuid.uuid5(KEYWORD_NAMESPACE, name))
