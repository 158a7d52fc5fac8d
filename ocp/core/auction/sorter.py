"""
Oblivious Sorter - Rate-descending ordering of sealed bids.

Bubble sort over n entries: n(n-1)/2 compare-and-swap steps, each one

    swap    = lt(rate[j], rate[j+1])
    rate[j]   , rate[j+1]   = select(swap, rate[j+1], rate[j]),   select(swap, rate[j], rate[j+1])
    qty[j]    , qty[j+1]    = select(swap, qty[j+1], qty[j]),     select(swap, qty[j], qty[j+1])

The sequence of operations depends only on n, never on the rates. A swap
fires on strict less-than, so equal rates keep submission order.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ocp.core.auction.bidbook import Bid
from ocp.crypto.fhe import Encrypted, EncryptedBackend
from ocp.utils.logger import get_logger

logger = get_logger("sorter")


@dataclass
class SortedEntry:
    """One (rate, quantity) slot of a sorted view."""
    rate: Encrypted
    quantity: Encrypted


class SortedBidView:
    """
    Ephemeral rate-descending copy of an auction's bids.

    Holds no bidder identities; recomputed on every clearing run.
    """

    def __init__(self, entries: List[SortedEntry]):
        self._entries = entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> SortedEntry:
        return self._entries[index]

    @property
    def rates(self) -> List[Encrypted]:
        return [entry.rate for entry in self._entries]

    @property
    def quantities(self) -> List[Encrypted]:
        return [entry.quantity for entry in self._entries]


def comparison_count(n: int) -> int:
    """Number of compare-and-swap steps for n entries."""
    return n * (n - 1) // 2


class ObliviousSorter:
    """Sorts encrypted (rate, quantity) pairs without revealing comparisons."""

    def __init__(self, backend: EncryptedBackend):
        self.backend = backend

    def sort_bids(self, bids: Sequence[Bid]) -> SortedBidView:
        """Sort an auction's bids (given in submission order)."""
        return self.sort_pairs([(bid.rate, bid.quantity) for bid in bids])

    def sort_pairs(self, pairs: Sequence[Tuple[Encrypted, Encrypted]]) -> SortedBidView:
        """
        Sort (rate, quantity) pairs by rate, descending.

        Args:
            pairs: Encrypted (rate, quantity) pairs in tie-break order

        Returns:
            SortedBidView over fresh handles; inputs are untouched
        """
        rates = [rate for rate, _ in pairs]
        quantities = [quantity for _, quantity in pairs]
        n = len(rates)

        for i in range(n):
            for j in range(n - i - 1):
                self._compare_and_swap(rates, quantities, j)

        logger.debug(f"Sorted {n} bids with {comparison_count(n)} oblivious comparisons")
        return SortedBidView([SortedEntry(r, q) for r, q in zip(rates, quantities)])

    def _compare_and_swap(self, rates: List[Encrypted], quantities: List[Encrypted], j: int) -> None:
        select = self.backend.select
        swap = self.backend.lt(rates[j], rates[j + 1])

        rates[j], rates[j + 1] = (
            select(swap, rates[j + 1], rates[j]),
            select(swap, rates[j], rates[j + 1]),
        )
        quantities[j], quantities[j + 1] = (
            select(swap, quantities[j + 1], quantities[j]),
            select(swap, quantities[j], quantities[j + 1]),
        )
