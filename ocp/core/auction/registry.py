"""
Auction Registry - Creation and bookkeeping of auction records.

Each auction sells a fixed inventory of an item token for a bid token.
Identifiers are assigned from a process-wide counter starting at 1.
Records are never deleted; status only moves forward:

    OPEN -> CLOSING -> CLOSED

CLOSING is held only for the duration of a settlement call.
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, Iterator, List, Optional

from ocp.core.errors import AuctionNotFoundError, InvalidAuctionParametersError
from ocp.utils.logger import get_logger

logger = get_logger("registry")


# =============================================================================
# Constants
# =============================================================================

FIRST_AUCTION_ID = 1

# Default minimum-acceptable-fraction threshold (percent of inventory)
DEFAULT_MIN_FRACTION_PERCENT = 1


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(IntEnum):
    """Lifecycle state of an auction."""
    OPEN = 0       # Accepting bids, clearing may run
    CLOSING = 1    # Settlement in progress
    CLOSED = 2     # Settled


# =============================================================================
# Identifier Counter
# =============================================================================


class AuctionIdCounter:
    """
    Monotonic auction identifier source.

    The single mutator is next_id(). Not safe for concurrent use.
    """

    def __init__(self, start: int = FIRST_AUCTION_ID):
        self._counter: Iterator[int] = itertools.count(start)
        self._last: Optional[int] = None

    def next_id(self) -> int:
        self._last = next(self._counter)
        return self._last

    @property
    def last_id(self) -> Optional[int]:
        return self._last


# Process-wide counter shared by registries that don't bring their own
_global_counter = AuctionIdCounter()


def reset_global_counter(start: int = FIRST_AUCTION_ID) -> None:
    """Re-initialize the process-wide identifier counter."""
    global _global_counter
    _global_counter = AuctionIdCounter(start)


def global_counter() -> AuctionIdCounter:
    return _global_counter


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class AuctionRecord:
    """
    A registered auction.

    Attributes:
        auction_id: Unique identifier
        owner: Creator's address; receives proceeds and unsold units
        item_token: Token being sold
        bid_token: Token bids are paid in
        description: Free-form text
        total_units: Inventory, fixed at creation
        minimum_units: total_units * min_fraction_percent // 100
        start_time: Unix time bidding opens
        end_time: Unix time bidding closes
        status: Lifecycle state
    """
    auction_id: int
    owner: bytes
    item_token: str
    bid_token: str
    description: str
    total_units: int
    minimum_units: int
    start_time: int
    end_time: int
    status: AuctionStatus = AuctionStatus.OPEN
    created_at: int = field(default_factory=lambda: int(time.time()))

    def is_open(self) -> bool:
        return self.status == AuctionStatus.OPEN

    def in_bidding_window(self, now: int) -> bool:
        return self.start_time <= now < self.end_time


def compute_minimum_units(total_units: int, min_fraction_percent: int = DEFAULT_MIN_FRACTION_PERCENT) -> int:
    """Minimum acceptable fill, truncated toward zero."""
    return total_units * min_fraction_percent // 100


# =============================================================================
# Auction Registry
# =============================================================================


class AuctionRegistry:
    """
    Store of auction records keyed by identifier, in creation order.
    """

    def __init__(
        self,
        min_fraction_percent: int = DEFAULT_MIN_FRACTION_PERCENT,
        counter: Optional[AuctionIdCounter] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the registry.

        Args:
            min_fraction_percent: Threshold used for minimum_units
            counter: Identifier source. Defaults to the process-wide counter.
            clock: Time source for schedules
        """
        self.min_fraction_percent = min_fraction_percent
        self.counter = counter
        self.clock = clock
        self._auctions: Dict[int, AuctionRecord] = {}

    def _counter(self) -> AuctionIdCounter:
        return self.counter if self.counter is not None else global_counter()

    def prepare(
        self,
        owner: bytes,
        item_token: str,
        bid_token: str,
        description: str,
        total_units: int,
        start_delay: int,
        duration: int,
    ) -> AuctionRecord:
        """
        Validate parameters and build a record without registering it.

        The identifier is assigned later by register(), once custody of the
        inventory has been taken.
        """
        if total_units <= 0:
            raise InvalidAuctionParametersError(f"total_units must be positive, got {total_units}")
        if start_delay < 0:
            raise InvalidAuctionParametersError(f"start_delay must be non-negative, got {start_delay}")
        if duration <= 0:
            raise InvalidAuctionParametersError(f"duration must be positive, got {duration}")
        if item_token == bid_token:
            raise InvalidAuctionParametersError("item_token and bid_token must differ")

        start_time = int(self.clock()) + start_delay
        return AuctionRecord(
            auction_id=0,
            owner=owner,
            item_token=item_token,
            bid_token=bid_token,
            description=description,
            total_units=total_units,
            minimum_units=compute_minimum_units(total_units, self.min_fraction_percent),
            start_time=start_time,
            end_time=start_time + duration,
        )

    def register(self, record: AuctionRecord) -> AuctionRecord:
        """Assign the next identifier and store the record."""
        record.auction_id = self._counter().next_id()
        self._auctions[record.auction_id] = record
        logger.info(f"Auction {record.auction_id} created: {record.total_units} units of "
                    f"{record.item_token} for {record.bid_token}, owner=0x{record.owner.hex()[:8]}")
        return record

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, auction_id: int) -> AuctionRecord:
        """Get an auction or raise AuctionNotFoundError."""
        record = self._auctions.get(auction_id)
        if record is None:
            raise AuctionNotFoundError(auction_id)
        return record

    def exists(self, auction_id: int) -> bool:
        return auction_id in self._auctions

    def all(self) -> List[AuctionRecord]:
        """All auctions in creation order."""
        return list(self._auctions.values())

    def __len__(self) -> int:
        return len(self._auctions)

    # =========================================================================
    # Status
    # =========================================================================

    def set_status(self, auction_id: int, status: AuctionStatus) -> None:
        record = self.get(auction_id)
        logger.debug(f"Auction {auction_id}: {record.status.name} -> {status.name}")
        record.status = status
