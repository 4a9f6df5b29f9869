"""Stratified sampling of oversized collections."""

from __future__ import annotations

import math
from collections import defaultdict

from prompt_expert.content.kinds import KIND_PRIORITY, detect_kind
from prompt_expert.schemas.content import ContentKind, RemoteEntry


def stratified_sample(entries: list[RemoteEntry], max_count: int) -> list[RemoteEntry]:
    """Pick *max_count* entries proportionally across detected kinds.

    Each kind gets ``ceil(share * max_count)`` slots and fills them
    smallest-first; the concatenation (in kind-priority order) is then cut
    to *max_count*. The ceiled shares sum to at least *max_count*, so the result has
    exactly ``min(max_count, len(entries))`` entries.
    """
    if len(entries) <= max_count:
        return list(entries)
    if max_count <= 0:
        return []

    groups: dict[ContentKind, list[RemoteEntry]] = defaultdict(list)
    for entry in entries:
        groups[detect_kind(entry.path)].append(entry)

    total = len(entries)
    sampled: list[RemoteEntry] = []
    for kind in KIND_PRIORITY:
        group = groups.get(kind)
        if not group:
            continue
        quota = min(len(group), math.ceil(len(group) * max_count / total))
        sampled.extend(sorted(group, key=lambda e: (e.size, e.path))[:quota])

    return sampled[:max_count]
