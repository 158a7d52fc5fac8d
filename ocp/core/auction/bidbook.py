"""
Bid Book - Confidential bid storage for OCP auctions.

Each bidder may hold at most one bid per auction. Bids are immutable once
stored and are never removed, even after settlement.

Ordering:
--------
Every bid receives a book-wide sequence number at insertion. Both indexes
(per auction, per bidder) iterate in sequence order, and that order is the
tie-break: among equal rates the earlier submission wins.
"""

import itertools
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from ocp.core.auction.registry import AuctionRecord
from ocp.core.errors import DuplicateBidError, InvalidAuctionParametersError, LedgerTransferError
from ocp.core.state.ledger import ConfidentialLedger
from ocp.crypto import short_hex
from ocp.crypto.fhe import Encrypted, EncryptedBackend, InputCiphertext
from ocp.utils.logger import get_logger

logger = get_logger("bidbook")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_BIDS_PER_AUCTION = 256


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class Bid:
    """
    A sealed bid.

    Attributes:
        sequence: Book-wide insertion number (tie-break order)
        auction_id: Auction the bid belongs to
        bidder: Bidder's address
        rate: Encrypted price per unit
        quantity: Encrypted units wanted
        escrow: Encrypted quantity * rate pulled at submission
    """
    sequence: int
    auction_id: int
    bidder: bytes
    rate: Encrypted
    quantity: Encrypted
    escrow: Encrypted


class BidSequence:
    """
    Append-only collection of bids keyed by sequence number.

    Iteration follows ascending sequence, independent of how the
    underlying mapping happens to order its keys.
    """

    def __init__(self):
        self._bids: Dict[int, Bid] = {}

    def append(self, bid: Bid) -> None:
        if bid.sequence in self._bids:
            raise ValueError(f"Sequence {bid.sequence} already present")
        self._bids[bid.sequence] = bid

    def __iter__(self) -> Iterator[Bid]:
        for sequence in sorted(self._bids):
            yield self._bids[sequence]

    def __len__(self) -> int:
        return len(self._bids)

    def to_list(self) -> List[Bid]:
        return list(self)


# =============================================================================
# Bid Book
# =============================================================================


class BidBook:
    """
    Accepts and indexes confidential bids.

    Attributes:
        by_auction: auction_id -> bids in submission order
        by_bidder: bidder -> bids in submission order
    """

    def __init__(
        self,
        backend: EncryptedBackend,
        ledger: ConfidentialLedger,
        contract: bytes,
        max_bids_per_auction: int = DEFAULT_MAX_BIDS_PER_AUCTION,
    ):
        """
        Initialize the bid book.

        Args:
            backend: Encrypted arithmetic backend
            ledger: Token ledger used for escrow
            contract: Engine address (escrow custody and input binding)
            max_bids_per_auction: Cap on bids per auction
        """
        self.backend = backend
        self.ledger = ledger
        self.contract = contract
        self.max_bids_per_auction = max_bids_per_auction

        self.by_auction: Dict[int, BidSequence] = {}
        self.by_bidder: Dict[bytes, BidSequence] = {}
        self._sequence = itertools.count(1)

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_bid(
        self,
        auction: AuctionRecord,
        bidder: bytes,
        rate_input: InputCiphertext,
        quantity_input: InputCiphertext,
    ) -> Bid:
        """
        Store a sealed bid and escrow its full cost.

        Args:
            auction: Target auction (caller has checked it is open)
            bidder: Bidder's address
            rate_input: Encrypted rate with proof
            quantity_input: Encrypted quantity with proof

        Returns:
            The stored Bid

        Raises:
            InvalidInputProofError: An input failed verification
            DuplicateBidError: Bidder already bid in this auction
            InvalidAuctionParametersError: Auction is at its bid cap
            LedgerTransferError: Escrow pull rejected
        """
        rate = self.backend.verify_and_decrypt_input(rate_input, bidder, self.contract)
        quantity = self.backend.verify_and_decrypt_input(quantity_input, bidder, self.contract)

        if self.has_bid(auction.auction_id, bidder):
            raise DuplicateBidError(auction.auction_id, bidder)

        if self.bid_count(auction.auction_id) >= self.max_bids_per_auction:
            raise InvalidAuctionParametersError(
                f"Auction {auction.auction_id} reached {self.max_bids_per_auction} bids"
            )

        escrow = self.backend.mul(quantity, rate)
        if not self.ledger.transfer_from(
            auction.bid_token, bidder, self.contract, escrow, operator=self.contract
        ):
            raise LedgerTransferError(auction.bid_token, f"escrow pull from 0x{bidder.hex()} rejected")

        bid = Bid(
            sequence=next(self._sequence),
            auction_id=auction.auction_id,
            bidder=bidder,
            rate=rate,
            quantity=quantity,
            escrow=escrow,
        )
        for value in (rate, quantity, escrow):
            self.backend.grant_decrypt_access(value, bidder)

        self.by_auction.setdefault(auction.auction_id, BidSequence()).append(bid)
        self.by_bidder.setdefault(bidder, BidSequence()).append(bid)

        logger.info(f"Bid #{bid.sequence} accepted for auction {auction.auction_id} "
                    f"from 0x{short_hex(bidder)}")
        return bid

    # =========================================================================
    # Queries
    # =========================================================================

    def has_bid(self, auction_id: int, bidder: bytes) -> bool:
        """Linear uniqueness scan over the auction's bids."""
        for bid in self.by_auction.get(auction_id, ()):
            if bid.bidder == bidder:
                return True
        return False

    def get_bid(self, auction_id: int, bidder: bytes) -> Optional[Bid]:
        for bid in self.by_bidder.get(bidder, ()):
            if bid.auction_id == auction_id:
                return bid
        return None

    def bids_for_auction(self, auction_id: int) -> List[Bid]:
        """Bids in submission order."""
        return self.by_auction.get(auction_id, BidSequence()).to_list()

    def bids_for_bidder(self, bidder: bytes) -> List[Bid]:
        return self.by_bidder.get(bidder, BidSequence()).to_list()

    def bid_count(self, auction_id: int) -> int:
        return len(self.by_auction.get(auction_id, ()))
