"""
Clearing Engine - Uniform clearing price over sorted sealed bids.

Single oblivious forward pass over the rate-descending view:

    remaining = total_units, clearing_rate = 0
    for each (rate, quantity):
        active        = remaining > 0
        want          = active ? quantity : 0
        capped        = want > remaining ? remaining : want
        remaining     = active ? remaining - capped : remaining
        clearing_rate = active ? rate : clearing_rate

The clearing rate ends as the rate of the last bid that received any units.
If inventory is never exhausted every bid is active, so it ends as the lowest
rate. With no bids the clearing rate is an encrypted zero.
"""

from dataclasses import dataclass, field
import time
from typing import Dict, Optional

from ocp.core.auction.bidbook import BidBook
from ocp.core.auction.registry import AuctionRecord
from ocp.core.auction.sorter import ObliviousSorter, SortedBidView
from ocp.core.errors import AuctionNotActiveError
from ocp.crypto import short_hex
from ocp.crypto.fhe import Encrypted, EncryptedBackend
from ocp.utils.logger import get_logger

logger = get_logger("clearing")


@dataclass
class ClearingResult:
    """
    Stored clearing rate for one auction.

    Attributes:
        auction_id: Auction the rate belongs to
        clearing_rate: Encrypted uniform price per unit
        computed_by: Principal granted decrypt access at computation
        bid_count: Number of bids the rate was computed over
    """
    auction_id: int
    clearing_rate: Encrypted
    computed_by: bytes
    bid_count: int
    computed_at: int = field(default_factory=lambda: int(time.time()))


class ClearingEngine:
    """
    Computes and stores clearing rates.

    Results are overwritten on every computation. An auction that has never
    been cleared has no entry, which is distinct from a zero rate.
    """

    def __init__(self, backend: EncryptedBackend, bidbook: BidBook, sorter: ObliviousSorter):
        self.backend = backend
        self.bidbook = bidbook
        self.sorter = sorter
        self.results: Dict[int, ClearingResult] = {}

    def compute_clearing_price(self, auction: AuctionRecord, caller: bytes) -> ClearingResult:
        """
        Sort the auction's bids and determine its clearing rate.

        Args:
            auction: Auction to clear
            caller: Principal granted decrypt access on the result

        Returns:
            The stored ClearingResult

        Raises:
            AuctionNotActiveError: Auction is not open
        """
        if not auction.is_open():
            raise AuctionNotActiveError(auction.auction_id, auction.status.name)

        bids = self.bidbook.bids_for_auction(auction.auction_id)
        view = self.sorter.sort_bids(bids)
        clearing_rate = self.clear(view, auction.total_units)

        self.backend.grant_decrypt_access(clearing_rate, caller)
        self.backend.grant_decrypt_access(clearing_rate, auction.owner)

        result = ClearingResult(
            auction_id=auction.auction_id,
            clearing_rate=clearing_rate,
            computed_by=caller,
            bid_count=len(bids),
        )
        self.results[auction.auction_id] = result

        logger.info(f"Auction {auction.auction_id} cleared over {len(bids)} bids, "
                    f"rate handle {short_hex(clearing_rate.handle)}")
        return result

    def clear(self, view: SortedBidView, total_units: int) -> Encrypted:
        """
        Oblivious clearing pass over a rate-descending view.

        Args:
            view: Sorted (rate, quantity) entries
            total_units: Inventory on offer

        Returns:
            Encrypted clearing rate
        """
        fhe = self.backend
        zero = fhe.encrypt(0)
        remaining = fhe.encrypt(total_units)
        clearing_rate = fhe.encrypt(0)

        for entry in view:
            active = fhe.gt(remaining, zero)
            want = fhe.select(active, entry.quantity, zero)
            capped = fhe.select(fhe.gt(want, remaining), remaining, want)
            remaining = fhe.select(active, fhe.sub(remaining, capped), remaining)
            clearing_rate = fhe.select(active, entry.rate, clearing_rate)

        return clearing_rate

    def get_result(self, auction_id: int) -> Optional[ClearingResult]:
        """Stored result, or None if never computed."""
        return self.results.get(auction_id)
