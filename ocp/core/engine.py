"""
Auction Engine - Caller-facing surface of the confidential clearing pipeline.

Wires the components together:

    AuctionRegistry -> BidBook -> ObliviousSorter -> ClearingEngine
                                                 \\-> SettlementEngine

Operations:
----------
- create_auction:          take custody of inventory, register the auction
- submit_bid:              verify inputs, enforce one bid per bidder, escrow
- compute_clearing_price:  sort + clear, store the encrypted rate
- get_clearing_price:      return the stored rate with a decrypt grant
- finalize_auction:        settle at the stored rate and close

Each operation is atomic. A ledger checkpoint is taken on entry and restored
if anything raises, and engine state is only written once every ledger call
has succeeded.

Status machine:
--------------
OPEN -> CLOSING -> CLOSED. finalize_auction refuses anything but OPEN, so a
settled auction cannot pay out twice.
"""

import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from ocp.core.auction.bidbook import Bid, BidBook
from ocp.core.auction.clearing import ClearingEngine, ClearingResult
from ocp.core.auction.registry import AuctionIdCounter, AuctionRecord, AuctionRegistry, AuctionStatus
from ocp.core.auction.settlement import Allocation, SettlementEngine, SettlementReport
from ocp.core.auction.sorter import ObliviousSorter
from ocp.core.config import EngineConfig
from ocp.core.errors import (
    AuctionNotActiveError,
    BiddingWindowError,
    ClearingPriceNotSetError,
    LedgerTransferError,
)
from ocp.core.state.ledger import ConfidentialLedger
from ocp.crypto import keccak256, short_hex
from ocp.crypto.fhe import Encrypted, EncryptedBackend, InputCiphertext
from ocp.utils.logger import get_logger

logger = get_logger("engine")


# Default custody address of the engine
ENGINE_ADDRESS = keccak256(b"ocp.engine")[-20:]


class AuctionEngine:
    """
    Confidential uniform-price auction engine.

    Attributes:
        registry: Auction records
        bidbook: Sealed bids
        sorter: Oblivious rate sorter
        clearing: Clearing rate computation and storage
        settlement: Fill, refund and payout pass
    """

    def __init__(
        self,
        backend: EncryptedBackend,
        ledger: ConfidentialLedger,
        config: Optional[EngineConfig] = None,
        address: bytes = ENGINE_ADDRESS,
        counter: Optional[AuctionIdCounter] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the engine.

        Args:
            backend: Encrypted arithmetic backend
            ledger: Token ledger collaborator
            config: Engine configuration. Defaults apply if None.
            address: Engine custody address
            counter: Auction identifier source. Process-wide if None.
            clock: Time source for auction schedules
        """
        self.backend = backend
        self.ledger = ledger
        self.config = config or EngineConfig()
        self.address = address

        self.registry = AuctionRegistry(
            min_fraction_percent=self.config.min_fraction_percent,
            counter=counter,
            clock=clock,
        )
        self.bidbook = BidBook(
            backend, ledger, address, max_bids_per_auction=self.config.max_bids_per_auction
        )
        self.sorter = ObliviousSorter(backend)
        self.clearing = ClearingEngine(backend, self.bidbook, self.sorter)
        self.settlement = SettlementEngine(backend, ledger, self.bidbook, address)

    # =========================================================================
    # Atomicity
    # =========================================================================

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        checkpoint = self.ledger.checkpoint()
        try:
            yield
        except Exception as e:
            self.ledger.rollback(checkpoint)
            logger.warning(f"{operation} aborted: {e}")
            raise

    def _now(self) -> int:
        return int(self.registry.clock())

    # =========================================================================
    # Auction Creation
    # =========================================================================

    def create_auction(
        self,
        owner: bytes,
        item_token: str,
        bid_token: str,
        description: str,
        total_units: int,
        start_delay: int = 0,
        duration: int = 3600,
    ) -> AuctionRecord:
        """
        Create an auction and take custody of its inventory.

        The owner must have approved the engine as operator on item_token.

        Args:
            owner: Creator's address
            item_token: Token being sold
            bid_token: Token bids are paid in
            description: Free-form text
            total_units: Inventory size
            start_delay: Seconds from now until bidding opens
            duration: Length of the bidding window in seconds

        Returns:
            The registered AuctionRecord

        Raises:
            InvalidAuctionParametersError: Parameters out of range
            LedgerTransferError: Inventory could not be pulled
        """
        with self._atomic("create_auction"):
            record = self.registry.prepare(
                owner, item_token, bid_token, description, total_units, start_delay, duration
            )
            inventory = self.backend.encrypt(total_units)
            if not self.ledger.transfer_from(
                item_token, owner, self.address, inventory, operator=self.address
            ):
                raise LedgerTransferError(item_token, f"inventory pull from 0x{owner.hex()} rejected")
            return self.registry.register(record)

    def get_auction(self, auction_id: int) -> AuctionRecord:
        return self.registry.get(auction_id)

    # =========================================================================
    # Bidding
    # =========================================================================

    def submit_bid(
        self,
        auction_id: int,
        bidder: bytes,
        rate_input: InputCiphertext,
        quantity_input: InputCiphertext,
    ) -> Bid:
        """
        Submit a sealed bid; escrows quantity * rate of the bid token.

        Raises:
            AuctionNotFoundError: Unknown auction
            AuctionNotActiveError: Auction not open
            BiddingWindowError: Outside the schedule (when enforced)
            InvalidInputProofError: Input failed verification
            DuplicateBidError: Bidder already bid in this auction
            LedgerTransferError: Escrow pull rejected
        """
        with self._atomic("submit_bid"):
            auction = self.registry.get(auction_id)
            if not auction.is_open():
                raise AuctionNotActiveError(auction_id, auction.status.name)
            if self.config.enforce_schedule and not auction.in_bidding_window(self._now()):
                raise BiddingWindowError(f"Auction {auction_id} is not accepting bids")
            return self.bidbook.submit_bid(auction, bidder, rate_input, quantity_input)

    def bid_count(self, auction_id: int) -> int:
        return self.bidbook.bid_count(auction_id)

    # =========================================================================
    # Clearing
    # =========================================================================

    def compute_clearing_price(self, auction_id: int, caller: bytes) -> Encrypted:
        """
        Compute and store the auction's clearing rate.

        Recomputes on every call. The caller is granted decrypt access.

        Raises:
            AuctionNotFoundError: Unknown auction
            AuctionNotActiveError: Auction not open
            BiddingWindowError: Bidding still open (when enforced)
        """
        with self._atomic("compute_clearing_price"):
            auction = self.registry.get(auction_id)
            if not auction.is_open():
                raise AuctionNotActiveError(auction_id, auction.status.name)
            if self.config.enforce_schedule and self._now() < auction.end_time:
                raise BiddingWindowError(f"Auction {auction_id} is still accepting bids")
            return self.clearing.compute_clearing_price(auction, caller).clearing_rate

    def get_clearing_price(self, auction_id: int, caller: bytes) -> Encrypted:
        """
        Stored clearing rate, still encrypted, with a decrypt grant for caller.

        Raises:
            AuctionNotFoundError: Unknown auction
            ClearingPriceNotSetError: Never computed
        """
        self.registry.get(auction_id)
        result = self.clearing.get_result(auction_id)
        if result is None:
            raise ClearingPriceNotSetError(auction_id)
        self.backend.grant_decrypt_access(result.clearing_rate, caller)
        return result.clearing_rate

    def get_clearing_result(self, auction_id: int) -> Optional[ClearingResult]:
        return self.clearing.get_result(auction_id)

    # =========================================================================
    # Settlement
    # =========================================================================

    def finalize_auction(self, auction_id: int) -> SettlementReport:
        """
        Settle the auction at its stored clearing rate and close it.

        Raises:
            AuctionNotFoundError: Unknown auction
            AuctionNotActiveError: Auction not open (already closing/closed)
            BiddingWindowError: Bidding still open (when enforced)
            ClearingPriceNotSetError: compute_clearing_price never ran
            LedgerTransferError: A payout was rejected
        """
        auction = self.registry.get(auction_id)
        if not auction.is_open():
            raise AuctionNotActiveError(auction_id, auction.status.name)
        if self.config.enforce_schedule and self._now() < auction.end_time:
            raise BiddingWindowError(f"Auction {auction_id} is still accepting bids")

        result = self.clearing.get_result(auction_id)
        if result is None:
            raise ClearingPriceNotSetError(auction_id)
        if result.bid_count != self.bidbook.bid_count(auction_id):
            logger.warning(f"Auction {auction_id}: clearing rate computed over {result.bid_count} "
                           f"bids, settling {self.bidbook.bid_count(auction_id)}")

        self.registry.set_status(auction_id, AuctionStatus.CLOSING)
        try:
            with self._atomic("finalize_auction"):
                report = self.settlement.settle(auction, result.clearing_rate)
        except Exception:
            self.registry.set_status(auction_id, AuctionStatus.OPEN)
            raise

        self.registry.set_status(auction_id, AuctionStatus.CLOSED)
        logger.info(f"Auction {auction_id} closed, clearing rate {short_hex(result.clearing_rate.handle)}")
        return report

    def get_allocation(self, auction_id: int, bidder: bytes) -> Optional[Allocation]:
        """A bidder's settlement outcome, or None if unsettled or absent."""
        report = self.settlement.reports.get(auction_id)
        if report is None:
            return None
        for allocation in report.allocations:
            if allocation.bidder == bidder:
                return allocation
        return None

    def get_settlement(self, auction_id: int) -> Optional[SettlementReport]:
        return self.settlement.reports.get(auction_id)

    # =========================================================================
    # Utility
    # =========================================================================

    def auctions(self) -> List[AuctionRecord]:
        return self.registry.all()

    def stats(self) -> dict:
        """Get engine statistics."""
        records = self.registry.all()
        return {
            "auction_count": len(records),
            "open_auctions": sum(1 for r in records if r.status == AuctionStatus.OPEN),
            "closed_auctions": sum(1 for r in records if r.status == AuctionStatus.CLOSED),
            "bid_count": sum(self.bidbook.bid_count(r.auction_id) for r in records),
            "ledger": self.ledger.stats(),
        }
