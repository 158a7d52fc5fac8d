"""
OCP Auction Module.

This module provides the confidential clearing pipeline:
- Auction registry and identifier counter
- Sealed bid book with one-bid-per-bidder enforcement
- Oblivious rate-descending sort
- Uniform clearing price determination
- Settlement of fills, refunds and proceeds
"""

from ocp.core.auction.registry import (
    AuctionRecord,
    AuctionRegistry,
    AuctionStatus,
    AuctionIdCounter,
    compute_minimum_units,
    reset_global_counter,
)

from ocp.core.auction.bidbook import (
    Bid,
    BidBook,
    BidSequence,
)

from ocp.core.auction.sorter import (
    ObliviousSorter,
    SortedBidView,
    SortedEntry,
    comparison_count,
)

from ocp.core.auction.clearing import (
    ClearingEngine,
    ClearingResult,
)

from ocp.core.auction.settlement import (
    Allocation,
    SettlementEngine,
    SettlementReport,
)

__all__ = [
    # Registry
    "AuctionRecord",
    "AuctionRegistry",
    "AuctionStatus",
    "AuctionIdCounter",
    "compute_minimum_units",
    "reset_global_counter",
    # Bids
    "Bid",
    "BidBook",
    "BidSequence",
    # Sorting
    "ObliviousSorter",
    "SortedBidView",
    "SortedEntry",
    "comparison_count",
    # Clearing
    "ClearingEngine",
    "ClearingResult",
    # Settlement
    "Allocation",
    "SettlementEngine",
    "SettlementReport",
]
