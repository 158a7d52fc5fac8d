"""
Oblivious Clearing Protocol (OCP)

A sealed-bid, uniform-clearing-price auction engine over encrypted values:
- Confidential bid book with one-bid-per-bidder enforcement
- Oblivious bubble sort of bids by rate
- Single-pass uniform clearing price against finite inventory
- Settlement with partial fills and escrow refunds
"""

__version__ = "0.1.0"
