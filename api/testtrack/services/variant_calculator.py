"""Deterministic variant calculation.

A visitor is hashed into one of 100 buckets per split; the bucket is then
matched against the split's cumulative variant weights. The same visitor
always lands in the same bucket for a given split, and buckets for
different splits are independent of each other.

Weight policy: negative weights count as zero. Weights are expected to
sum to 100. When they sum to less, the uncovered buckets resolve to no
variant; when they sum to more, weight past bucket 99 is unreachable.
"""

import hashlib
from collections.abc import Mapping

BUCKET_COUNT = 100


def assignment_bucket(visitor_id: str, split_name: str) -> int:
    """Stable bucket in [0, 100) for a visitor and split."""
    digest = hashlib.md5(f"{visitor_id}{split_name}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16) % BUCKET_COUNT


def calculate_variant(
    visitor_id: str,
    split_name: str,
    weights: Mapping[str, int],
) -> str | None:
    """Pick the variant for a visitor, or None if the weights select nothing.

    Variants are walked in name order, accumulating weights; the first
    variant whose cumulative weight exceeds the bucket wins. A variant
    with weight 0 never wins.
    """
    if not weights:
        return None

    bucket = assignment_bucket(visitor_id, split_name)

    cumulative = 0
    for variant in sorted(weights):
        weight = max(int(weights[variant]), 0)
        cumulative += weight
        if bucket < cumulative:
            return str(variant)

    return None
