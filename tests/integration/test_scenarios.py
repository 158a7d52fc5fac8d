"""
End-to-end auction scenarios.

Each test drives the public engine surface only: create, bid, clear, finalize,
then checks every participant's balances under their own decrypt grant.
"""

import pytest

from ocp.core.auction import AuctionStatus


ITEM = "ITEM"
USD = "USD"


def run(market, inventory, bids):
    auction = market.create_auction(inventory)
    bidders = market.place_bids(auction.auction_id, bids)
    rate, report = market.clear_and_settle(auction.auction_id)
    return auction, bidders, rate, report


class TestThreeBidders:
    """Inventory 100; bids (10, 60), (8, 50), (5, 40) in that order."""

    @pytest.fixture
    def outcome(self, market):
        return run(market, 100, [(10, 60), (8, 50), (5, 40)])

    def test_clearing_rate(self, outcome):
        _, _, rate, _ = outcome
        assert rate == 8

    def test_item_balances(self, market, outcome):
        _, bidders, _, _ = outcome
        assert [market.balance(ITEM, kp) for kp in bidders] == [60, 40, 0]

    def test_bid_token_balances(self, market, outcome):
        _, bidders, _, _ = outcome
        # escrow 600 / 400 / 200, paid 480 / 320 / 0
        assert [market.balance(USD, kp) for kp in bidders] == [120, 80, 200]

    def test_owner(self, market, outcome):
        assert market.balance(USD, market.owner) == 800
        assert market.balance(ITEM, market.owner) == 0

    def test_engine_custody_empty(self, market, outcome):
        assert market.balance(ITEM, market.engine.address) == 0
        assert market.balance(USD, market.engine.address) == 0

    def test_closed(self, market, outcome):
        auction, _, _, _ = outcome
        assert market.engine.get_auction(auction.auction_id).status == AuctionStatus.CLOSED

    def test_bidder_sees_own_allocation(self, market, outcome):
        auction, bidders, _, _ = outcome
        allocation = market.engine.get_allocation(auction.auction_id, bidders[1].address)
        assert market.backend.decrypt(allocation.filled, bidders[1].address) == 40
        assert market.backend.decrypt(allocation.owed, bidders[1].address) == 320
        assert not market.backend.has_access(allocation.filled, bidders[0].address)


class TestTiedRates:
    """Inventory 50; two bids at rate 7, quantities 30 then 80."""

    def test_earlier_bid_wins_tie(self, market):
        _, bidders, rate, _ = run(market, 50, [(7, 30), (7, 80)])
        assert rate == 7
        assert [market.balance(ITEM, kp) for kp in bidders] == [30, 20]
        assert [market.balance(USD, kp) for kp in bidders] == [0, 560 - 140]

    def test_submission_order_decides(self, market):
        _, bidders, _, _ = run(market, 50, [(7, 80), (7, 30)])
        assert [market.balance(ITEM, kp) for kp in bidders] == [50, 0]


class TestEdgeCases:
    def test_no_bids(self, market):
        _, _, rate, report = run(market, 25, [])
        assert rate == 0
        assert report.allocations == []
        assert market.balance(ITEM, market.owner) == 25
        assert market.balance(USD, market.owner) == 0

    def test_single_bid_below_inventory(self, market):
        _, bidders, rate, _ = run(market, 100, [(12, 30)])
        assert rate == 12
        assert market.balance(ITEM, bidders[0]) == 30
        assert market.balance(ITEM, market.owner) == 70
        assert market.balance(USD, market.owner) == 360

    def test_exact_fill(self, market):
        _, bidders, rate, _ = run(market, 90, [(6, 40), (9, 50)])
        assert rate == 6
        assert [market.balance(ITEM, kp) for kp in bidders] == [40, 50]
        assert market.balance(USD, bidders[1]) == 50 * 3

    def test_zero_quantity_bid(self, market):
        _, bidders, rate, _ = run(market, 10, [(50, 0), (4, 10)])
        assert rate == 4
        assert [market.balance(ITEM, kp) for kp in bidders] == [0, 10]

    def test_independent_auctions(self, market):
        first = market.create_auction(10)
        second = market.create_auction(10)
        a = market.place_bids(first.auction_id, [(5, 10)])
        b = market.place_bids(second.auction_id, [(3, 4)])

        market.clear_and_settle(second.auction_id)
        assert market.engine.get_auction(first.auction_id).is_open()
        market.clear_and_settle(first.auction_id)

        assert market.balance(ITEM, a[0]) == 10
        assert market.balance(ITEM, b[0]) == 4
        assert market.balance(USD, market.owner) == 50 + 12
