"""
Unit tests for the clearing engine.

Tests cover:
1. Clearing rate for exhausted and unexhausted inventory
2. Partial fills at the margin
3. Rate monotonicity
4. Stored results and status checks
"""

import random

import pytest

from ocp.core.auction import AuctionStatus, ClearingEngine, ObliviousSorter
from ocp.core.errors import AuctionNotActiveError
from ocp.crypto.fhe import SimulatedBackend


VIEWER = b"\x99" * 20


@pytest.fixture
def fhe():
    return SimulatedBackend()


@pytest.fixture
def clearing(fhe):
    sorter = ObliviousSorter(fhe)
    return ClearingEngine(fhe, bidbook=None, sorter=sorter)


def clear(fhe, clearing, total_units, bids):
    """Clearing rate for (rate, quantity) bids in submission order."""
    pairs = [(fhe.encrypt(rate), fhe.encrypt(quantity)) for rate, quantity in bids]
    view = clearing.sorter.sort_pairs(pairs)
    rate = clearing.clear(view, total_units)
    fhe.grant_decrypt_access(rate, VIEWER)
    return fhe.decrypt(rate, VIEWER)


def reference_clear(total_units, bids):
    remaining, rate = total_units, 0
    for r, q in sorted(bids, key=lambda b: -b[0]):
        if remaining > 0:
            remaining -= min(q, remaining)
            rate = r
    return rate


class TestClearingRate:
    """Tests for the clearing pass."""

    def test_marginal_bid_sets_price(self, fhe, clearing):
        assert clear(fhe, clearing, 100, [(10, 60), (8, 50), (5, 40)]) == 8

    def test_exact_exhaustion(self, fhe, clearing):
        assert clear(fhe, clearing, 100, [(10, 60), (8, 40), (5, 40)]) == 8

    def test_undersubscribed_uses_lowest_rate(self, fhe, clearing):
        assert clear(fhe, clearing, 1000, [(10, 60), (3, 50), (8, 40)]) == 3

    def test_single_bid_exceeding_supply(self, fhe, clearing):
        assert clear(fhe, clearing, 10, [(4, 500)]) == 4

    def test_no_bids_is_zero(self, fhe, clearing):
        assert clear(fhe, clearing, 100, []) == 0

    def test_order_of_submission_irrelevant(self, fhe, clearing):
        bids = [(5, 40), (10, 60), (8, 50)]
        assert clear(fhe, clearing, 100, bids) == clear(fhe, clearing, 100, list(reversed(bids)))

    def test_matches_reference(self, fhe, clearing):
        rng = random.Random(99)
        for trial in range(25):
            total = rng.randint(1, 50)
            bids = [(rng.randint(1, 20), rng.randint(0, 30)) for _ in range(rng.randint(0, 6))]
            assert clear(fhe, clearing, total, bids) == reference_clear(total, bids)


class TestMonotonicity:
    """Raising one bid's rate never lowers the clearing rate."""

    def test_rate_monotonic(self, fhe, clearing):
        rng = random.Random(7)
        for trial in range(15):
            total = rng.randint(1, 40)
            bids = [(rng.randint(1, 10), rng.randint(1, 20)) for _ in range(rng.randint(1, 5))]
            base = reference_clear(total, bids)

            i = rng.randrange(len(bids))
            raised = list(bids)
            raised[i] = (bids[i][0] + rng.randint(1, 5), bids[i][1])

            assert clear(fhe, clearing, total, raised) >= base
            assert clear(fhe, clearing, total, bids) == base


class TestClearingOperationCount:
    def test_trace_independent_of_values(self, fhe, clearing):
        a = [(fhe.encrypt(r), fhe.encrypt(q)) for r, q in [(1, 1), (2, 100), (3, 0)]]
        b = [(fhe.encrypt(r), fhe.encrypt(q)) for r, q in [(9, 50), (9, 50), (9, 50)]]

        fhe.reset_trace()
        clearing.clear(clearing.sorter.sort_pairs(a), 10)
        trace_a = list(fhe.trace)

        fhe.reset_trace()
        clearing.clear(clearing.sorter.sort_pairs(b), 10)
        assert fhe.trace == trace_a


class TestStoredResult:
    """Tests through the engine for storage and status checks."""

    def test_result_stored_and_granted(self, market):
        auction = market.create_auction(100)
        market.place_bids(auction.auction_id, [(10, 60), (8, 50)])
        caller = b"\x77" * 20

        rate = market.engine.compute_clearing_price(auction.auction_id, caller)

        assert market.backend.decrypt(rate, caller) == 8
        result = market.engine.get_clearing_result(auction.auction_id)
        assert result.computed_by == caller
        assert result.bid_count == 2

    def test_unset_differs_from_zero(self, market):
        auction = market.create_auction(100)
        assert market.engine.get_clearing_result(auction.auction_id) is None

        market.engine.compute_clearing_price(auction.auction_id, market.owner.address)
        result = market.engine.get_clearing_result(auction.auction_id)
        assert result is not None
        assert market.backend.decrypt(result.clearing_rate, market.owner.address) == 0

    def test_recompute_overwrites(self, market):
        auction = market.create_auction(100)
        market.place_bids(auction.auction_id, [(3, 10)])
        first = market.engine.compute_clearing_price(auction.auction_id, market.owner.address)
        market.place_bids(auction.auction_id, [(6, 100)])
        second = market.engine.compute_clearing_price(auction.auction_id, market.owner.address)

        assert first != second
        assert market.backend.decrypt(second, market.owner.address) == 6
        assert market.engine.get_clearing_result(auction.auction_id).clearing_rate == second

    def test_repeat_without_new_bids_same_value(self, market):
        auction = market.create_auction(100)
        market.place_bids(auction.auction_id, [(3, 10), (4, 100)])
        owner = market.owner.address
        a = market.engine.compute_clearing_price(auction.auction_id, owner)
        b = market.engine.compute_clearing_price(auction.auction_id, owner)
        assert market.backend.decrypt(a, owner) == market.backend.decrypt(b, owner) == 4

    def test_closed_auction_rejected(self, market):
        auction = market.create_auction(100)
        market.engine.registry.set_status(auction.auction_id, AuctionStatus.CLOSED)

        with pytest.raises(AuctionNotActiveError):
            market.engine.compute_clearing_price(auction.auction_id, market.owner.address)
