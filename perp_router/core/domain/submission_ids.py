"""Utilities for deterministic leg submission identifiers."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LegKey:
    """Identity of one leg of one request.

    The key is defined by (request_id, leg_index).
    """

    request_id: str
    leg_index: int


def stable_submission_id(key: LegKey, namespace: str) -> str:
    """Return a stable hex identifier for a leg submission.

    Every submission (including rebuilds and caller retries) of the same leg
    carries the same id, so the submission transport can detect duplicates.

    The namespace makes the mapping explicit and versionable.
    """
    if not namespace:
        raise ValueError("namespace must be non-empty")
    if key.leg_index < 0:
        raise ValueError("leg_index must be >= 0")

    payload = f"{key.request_id}:{key.leg_index}:{namespace}".encode("utf-8")
    return hashlib.blake2b(payload, digest_size=16).hexdigest()
