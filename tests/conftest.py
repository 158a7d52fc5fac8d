"""
Shared fixtures for OCP tests.

`market` bundles a simulated backend, a ledger and an engine, with helpers
for funding participants, placing sealed bids and decrypting results under
the right principal.
"""

from typing import List, Tuple

import pytest

from ocp.core.auction import AuctionIdCounter, AuctionRecord, Bid
from ocp.core.config import EngineConfig
from ocp.core.engine import AuctionEngine
from ocp.core.state import ConfidentialLedger
from ocp.crypto import KeyPair, generate_keypair
from ocp.crypto.fhe import Encrypted, SimulatedBackend


ITEM = "ITEM"
USD = "USD"


class Market:
    """Test harness around one engine."""

    def __init__(self, backend: SimulatedBackend, ledger: ConfidentialLedger, engine: AuctionEngine):
        self.backend = backend
        self.ledger = ledger
        self.engine = engine
        self.owner = generate_keypair()
        self.ledger.register_token(ITEM)
        self.ledger.register_token(USD)

    def create_auction(self, total_units: int, fund: int = None, **kwargs) -> AuctionRecord:
        self.ledger.mint(ITEM, self.owner.address, total_units if fund is None else fund)
        self.ledger.set_operator(ITEM, self.owner.address, self.engine.address)
        return self.engine.create_auction(
            self.owner.address, ITEM, USD, "test auction", total_units, **kwargs
        )

    def new_bidder(self, balance: int) -> KeyPair:
        kp = generate_keypair()
        self.ledger.mint(USD, kp.address, balance)
        self.ledger.set_operator(USD, kp.address, self.engine.address)
        return kp

    def encrypt_input(self, value: int, kp: KeyPair):
        return self.backend.encrypt_input(value, kp, self.engine.address)

    def bid(self, auction_id: int, kp: KeyPair, rate: int, quantity: int) -> Bid:
        return self.engine.submit_bid(
            auction_id, kp.address, self.encrypt_input(rate, kp), self.encrypt_input(quantity, kp)
        )

    def place_bids(self, auction_id: int, bids: List[Tuple[int, int]]) -> List[KeyPair]:
        """Fund and submit (rate, quantity) bids in order."""
        bidders = []
        for rate, quantity in bids:
            kp = self.new_bidder(rate * quantity)
            self.bid(auction_id, kp, rate, quantity)
            bidders.append(kp)
        return bidders

    def reveal(self, value: Encrypted, principal: bytes = None) -> int:
        """Decrypt through a test-only grant."""
        viewer = principal or b"\xee" * 20
        self.backend.grant_decrypt_access(value, viewer)
        return self.backend.decrypt(value, viewer)

    def balance(self, token: str, kp_or_address) -> int:
        address = kp_or_address.address if isinstance(kp_or_address, KeyPair) else kp_or_address
        return self.backend.decrypt(self.ledger.balance_of(token, address), address)

    def clear_and_settle(self, auction_id: int):
        rate = self.engine.compute_clearing_price(auction_id, self.owner.address)
        report = self.engine.finalize_auction(auction_id)
        return self.backend.decrypt(rate, self.owner.address), report


@pytest.fixture
def backend():
    return SimulatedBackend()


@pytest.fixture
def ledger(backend):
    return ConfidentialLedger(backend)


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def engine(backend, ledger, config):
    return AuctionEngine(backend, ledger, config=config, counter=AuctionIdCounter())


@pytest.fixture
def market(backend, ledger, engine):
    return Market(backend, ledger, engine)
