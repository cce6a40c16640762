"""Identifier generation for CRM records.

All ids minted on the client are 128-bit UUIDs rendered as 32-char hex.
Random ids (UUID4) are used for ordinary records and timeline events;
workflow-spawned records use name-based ids (UUID5) so that a re-run of the
same workflow step addresses the same document instead of creating a copy.
"""

from __future__ import annotations

import uuid

# Namespace for name-based ids derived by workflows
WORKFLOW_NAMESPACE = uuid.UUID("6f1c2b0e-3d4a-5e8f-9a7b-1c2d3e4f5a6b")


def new_id() -> str:
    """Return a fresh random record id."""
    return uuid.uuid4().hex


def derived_id(*parts: str) -> str:
    """Return a deterministic id for the given name parts.

    Args:
        parts: Components naming the record, e.g. ``("qr-1", "u-7", "main")``.

    Returns:
        Hex UUID5 stable across calls with the same parts.
    """
    return uuid.uuid5(WORKFLOW_NAMESPACE, ":".join(parts)).hex
