"""
Test fixtures for the metrics engine.
"""

from .metrics_fixtures import (
    ELITE_PRICE,
    INVESTOR_PRICE,
    NOW,
    build_snapshot,
    make_record,
    make_subscription,
    ts,
)

__all__ = [
    "ELITE_PRICE",
    "INVESTOR_PRICE",
    "NOW",
    "build_snapshot",
    "make_record",
    "make_subscription",
    "ts",
]
