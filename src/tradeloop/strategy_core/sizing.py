"""Deterministic position sizing utilities."""

from __future__ import annotations


def momentum_to_target(
    momentum_score: float,
    max_abs_qty: float,
    threshold: float,
) -> float:
    """Map momentum score to a bounded target position."""
    if momentum_score >= threshold:
        return max_abs_qty
    if momentum_score <= -threshold:
        return -max_abs_qty
    return 0.0
