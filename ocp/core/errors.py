"""
Errors raised by the OCP auction engine.

Every failure is surfaced synchronously to the caller. Nothing here is
retried internally; an error aborts the enclosing engine operation and
leaves state as if the call never happened.
"""

from typing import Optional


class OCPError(Exception):
    """Base class for all engine errors."""


class AuctionNotActiveError(OCPError):
    """Operation requires an Open auction."""

    def __init__(self, auction_id: int, status: Optional[str] = None, message: Optional[str] = None):
        self.auction_id = auction_id
        self.status = status
        detail = f" (status: {status})" if status else ""
        super().__init__(message or f"Auction {auction_id} is not active{detail}")


class AuctionNotFoundError(AuctionNotActiveError):
    """No auction exists with the given identifier; a missing auction is never active."""

    def __init__(self, auction_id: int):
        super().__init__(auction_id, message=f"Auction {auction_id} does not exist")


class DuplicateBidError(OCPError):
    """Bidder already holds a bid in this auction."""

    def __init__(self, auction_id: int, bidder: bytes):
        self.auction_id = auction_id
        self.bidder = bidder
        super().__init__(f"Bidder 0x{bidder.hex()} already bid in auction {auction_id}")


class LedgerTransferError(OCPError):
    """The token ledger rejected an escrow or payout transfer."""

    def __init__(self, token: str, reason: str = "transfer rejected"):
        self.token = token
        self.reason = reason
        super().__init__(f"Ledger transfer of {token} failed: {reason}")


class ClearingPriceNotSetError(OCPError):
    """Clearing price has never been computed for this auction."""

    def __init__(self, auction_id: int):
        self.auction_id = auction_id
        super().__init__(f"Clearing price for auction {auction_id} is not set")


class BiddingWindowError(OCPError):
    """Operation attempted outside the auction's schedule."""


class InvalidAuctionParametersError(OCPError):
    """Auction creation or bid parameters are out of range."""


class InvalidInputProofError(OCPError):
    """Encrypted input failed proof verification."""


class AccessDeniedError(OCPError):
    """Principal holds no decryption grant for the value."""
