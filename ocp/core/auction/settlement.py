"""
Settlement Engine - Fills, refunds and payouts at the clearing rate.

Walks the auction's bids in original submission order (not rate order):

    remaining = total_units
    for each bid:
        capped    = quantity > remaining ? remaining : quantity
        eligible  = (remaining > 0) and (rate >= clearing_rate)
        fill      = eligible ? capped : 0
        remaining = eligible ? remaining - capped : remaining
        transfer fill item-token to bidder
        refund    = quantity * rate - fill * clearing_rate
        transfer refund bid-token to bidder

Then the owner receives (total_units - remaining) * clearing_rate of
bid-token and the `remaining` unsold item-token units.

Every bid triggers both ledger calls; losing bids receive an encrypted zero
fill and their full escrow back. No step branches on an encrypted value.
"""

from dataclasses import dataclass
from typing import Dict, List

from ocp.core.auction.bidbook import Bid, BidBook
from ocp.core.auction.registry import AuctionRecord
from ocp.core.errors import LedgerTransferError
from ocp.core.state.ledger import ConfidentialLedger
from ocp.crypto import short_hex
from ocp.crypto.fhe import Encrypted, EncryptedBackend
from ocp.utils.logger import get_logger

logger = get_logger("settlement")


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class Allocation:
    """
    Settlement outcome for one bid.

    Attributes:
        bidder: Bidder's address
        sequence: Bid sequence number
        filled: Encrypted units transferred
        owed: Encrypted filled * clearing_rate
        refund: Encrypted escrow - owed
    """
    bidder: bytes
    sequence: int
    filled: Encrypted
    owed: Encrypted
    refund: Encrypted


@dataclass(frozen=True)
class SettlementReport:
    """Outcome of settling one auction."""
    auction_id: int
    clearing_rate: Encrypted
    allocations: List[Allocation]
    sold_units: Encrypted
    unsold_units: Encrypted
    proceeds: Encrypted


# =============================================================================
# Settlement Engine
# =============================================================================


class SettlementEngine:
    """Settles auctions against the token ledger."""

    def __init__(
        self,
        backend: EncryptedBackend,
        ledger: ConfidentialLedger,
        bidbook: BidBook,
        contract: bytes,
    ):
        self.backend = backend
        self.ledger = ledger
        self.bidbook = bidbook
        self.contract = contract
        self.reports: Dict[int, SettlementReport] = {}

    def settle(self, auction: AuctionRecord, clearing_rate: Encrypted) -> SettlementReport:
        """
        Allocate inventory, refund escrow and pay the owner.

        Status checks and atomicity are the caller's concern. This method
        performs transfers unconditionally; calling it twice pays twice.

        Args:
            auction: Auction being settled
            clearing_rate: Encrypted uniform price

        Returns:
            SettlementReport

        Raises:
            LedgerTransferError: Any transfer rejected
        """
        fhe = self.backend
        zero = fhe.encrypt(0)
        total = fhe.encrypt(auction.total_units)
        remaining = total

        allocations = []
        for bid in self.bidbook.bids_for_auction(auction.auction_id):
            allocation, remaining = self._settle_bid(auction, bid, clearing_rate, remaining, zero)
            allocations.append(allocation)

        sold_units = fhe.sub(total, remaining)
        proceeds = fhe.mul(sold_units, clearing_rate)
        self._push(auction.bid_token, auction.owner, proceeds)
        self._push(auction.item_token, auction.owner, remaining)

        for value in (sold_units, remaining, proceeds):
            fhe.grant_decrypt_access(value, auction.owner)

        report = SettlementReport(
            auction_id=auction.auction_id,
            clearing_rate=clearing_rate,
            allocations=allocations,
            sold_units=sold_units,
            unsold_units=remaining,
            proceeds=proceeds,
        )
        self.reports[auction.auction_id] = report

        logger.info(f"Auction {auction.auction_id} settled: {len(allocations)} bids, "
                    f"proceeds handle {short_hex(proceeds.handle)}")
        return report

    def _settle_bid(
        self,
        auction: AuctionRecord,
        bid: Bid,
        clearing_rate: Encrypted,
        remaining: Encrypted,
        zero: Encrypted,
    ):
        fhe = self.backend

        capped = fhe.select(fhe.gt(bid.quantity, remaining), remaining, bid.quantity)
        eligible = fhe.and_(fhe.gt(remaining, zero), fhe.ge(bid.rate, clearing_rate))
        filled = fhe.select(eligible, capped, zero)
        remaining = fhe.select(eligible, fhe.sub(remaining, capped), remaining)

        self._push(auction.item_token, bid.bidder, filled)

        owed = fhe.mul(filled, clearing_rate)
        refund = fhe.sub(bid.escrow, owed)
        self._push(auction.bid_token, bid.bidder, refund)

        for value in (filled, owed, refund):
            fhe.grant_decrypt_access(value, bid.bidder)

        allocation = Allocation(
            bidder=bid.bidder,
            sequence=bid.sequence,
            filled=filled,
            owed=owed,
            refund=refund,
        )
        return allocation, remaining

    def _push(self, token: str, recipient: bytes, amount: Encrypted) -> None:
        if not self.ledger.transfer(token, self.contract, recipient, amount):
            raise LedgerTransferError(token, f"payout to 0x{recipient.hex()} rejected")
