"""Base test suites for live store implementations."""

from .live_suite import BaseLiveStoreTestSuite, LiveStoreContract

__all__ = [
    "BaseLiveStoreTestSuite",
    "LiveStoreContract",
]
