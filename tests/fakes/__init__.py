"""Fake channels, store wrappers and fixtures for rollout and migration tests (no live network)."""

from .registry import (
    FailingChannel,
    FakeChannel,
    RacingStore,
    make_store,
    publish_fleet,
    write_wasm,
)

__all__ = [
    "FailingChannel",
    "FakeChannel",
    "RacingStore",
    "make_store",
    "publish_fleet",
    "write_wasm",
]
