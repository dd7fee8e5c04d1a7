"""
Bridge Module

Per-source adapters feeding one shared resolve-and-persist pipeline.
"""

from tracker.bridge.base import ObservationWithFact, SourceAdapter
from tracker.bridge.ccis import CCISAdapter
from tracker.bridge.charitable_trusts import CharitableTrustsAdapter
from tracker.bridge.das_bids import DASBidsAdapter
from tracker.bridge.dhhs_contracts import DHHSContractsAdapter
from tracker.bridge.fac import FACAdapter
from tracker.bridge.hhs_taggs import HHSTaggsAdapter
from tracker.bridge.pipeline import (
    BridgeConfig,
    BridgePipeline,
    BridgeResult,
    store_raw_document,
)
from tracker.bridge.transparent_nh import TransparentNHAdapter
from tracker.bridge.usaspending import SamGovAdapter, USASpendingAdapter

# Roster first so licensing attributes exist before payments are matched;
# Form 990 profiles after payments so grants can be compared with them
ADAPTERS = {
    adapter.source_key: adapter
    for adapter in (
        CCISAdapter,
        USASpendingAdapter,
        SamGovAdapter,
        HHSTaggsAdapter,
        TransparentNHAdapter,
        DHHSContractsAdapter,
        DASBidsAdapter,
        CharitableTrustsAdapter,
        FACAdapter,
    )
}


def get_adapter(source_key: str) -> SourceAdapter:
    """Instantiate the adapter registered for a raw document source key."""
    try:
        return ADAPTERS[source_key]()
    except KeyError:
        raise ValueError(
            f"Unknown source '{source_key}'. Available: {', '.join(ADAPTERS)}"
        ) from None


__all__ = [
    "ADAPTERS",
    "BridgeConfig",
    "BridgePipeline",
    "BridgeResult",
    "ObservationWithFact",
    "SourceAdapter",
    "get_adapter",
    "store_raw_document",
]
