"""
Ledger - Confidential multi-token balance ledger for OCP.

Conceptual Background:
---------------------
The auction engine moves tokens through this collaborator:

1. **Escrow**: bidders approve the engine as operator; the engine pulls
   `quantity * rate` of bid-token with transfer_from() at submission
2. **Custody**: the auction owner's inventory is pulled the same way at creation
3. **Payout**: settlement pushes item-token fills, bid-token refunds and
   proceeds out of engine custody with transfer()

Balances are Encrypted handles. A transfer is rejected (returns False) when
the token is unknown, the operator is not approved, or the sender's balance
does not cover the amount. The ledger is a trusted party: it decrypts the
sufficiency bit under its own grant, but never the amounts.

Checkpoints:
-----------
The engine takes a checkpoint before every state-mutating call and rolls back
on failure, so a rejected transfer mid-settlement leaves no partial payouts.
"""

from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

from ocp.crypto import short_hex
from ocp.crypto.fhe import Encrypted, EncryptedBackend
from ocp.utils.logger import get_logger

logger = get_logger("ledger")


# Principal the ledger uses for its own sufficiency checks
LEDGER_ADDRESS = b"\x00" * 19 + b"\x01"


# =============================================================================
# Ledger State
# =============================================================================


@dataclass
class TransferRecord:
    """One accepted transfer. Amount stays encrypted."""
    token: str
    sender: bytes
    recipient: bytes
    amount: Encrypted


@dataclass
class LedgerCheckpoint:
    """
    Copy of ledger state taken before an engine operation.

    Encrypted handles are immutable, so shallow copies suffice.
    """
    balances: Dict[Tuple[str, bytes], Encrypted]
    operators: Set[Tuple[str, bytes, bytes]]
    transfer_count: int


class ConfidentialLedger:
    """
    In-memory confidential token ledger.

    Attributes:
        tokens: Registered token identifiers
        balances: (token, account) -> encrypted balance
        operators: (token, holder, operator) approvals
        transfers: Accepted transfers in order
    """

    def __init__(self, backend: EncryptedBackend, address: bytes = LEDGER_ADDRESS):
        """
        Initialize the ledger.

        Args:
            backend: Encrypted arithmetic backend shared with the engine
            address: Principal used for the ledger's own decrypt grants
        """
        self.backend = backend
        self.address = address
        self.tokens: Set[str] = set()
        self.balances: Dict[Tuple[str, bytes], Encrypted] = {}
        self.operators: Set[Tuple[str, bytes, bytes]] = set()
        self.transfers: List[TransferRecord] = []

    # =========================================================================
    # Setup
    # =========================================================================

    def register_token(self, token: str) -> None:
        """Register a token identifier."""
        self.tokens.add(token)

    def mint(self, token: str, to: bytes, amount: int) -> Encrypted:
        """
        Credit a public amount to an account (test and demo funding).

        Returns:
            The account's new encrypted balance
        """
        self.register_token(token)
        balance = self.backend.add(self.balance_of(token, to), self.backend.encrypt(amount))
        self._store(token, to, balance)
        logger.debug(f"Minted {token} to 0x{short_hex(to)}")
        return balance

    def set_operator(self, token: str, holder: bytes, operator: bytes, approved: bool = True) -> None:
        """Allow (or revoke) `operator` to pull `token` from `holder`."""
        key = (token, holder, operator)
        if approved:
            self.operators.add(key)
        else:
            self.operators.discard(key)

    def is_operator(self, token: str, holder: bytes, operator: bytes) -> bool:
        return (token, holder, operator) in self.operators

    # =========================================================================
    # State Access
    # =========================================================================

    def balance_of(self, token: str, account: bytes) -> Encrypted:
        """Encrypted balance; an encrypted zero for unknown accounts."""
        balance = self.balances.get((token, account))
        if balance is None:
            balance = self.backend.encrypt(0)
            self._store(token, account, balance)
        return balance

    def _store(self, token: str, account: bytes, balance: Encrypted) -> None:
        self.balances[(token, account)] = balance
        self.backend.grant_decrypt_access(balance, account)
        self.backend.grant_decrypt_access(balance, self.address)

    # =========================================================================
    # Transfers
    # =========================================================================

    def transfer_from(
        self,
        token: str,
        holder: bytes,
        recipient: bytes,
        amount: Encrypted,
        operator: bytes,
    ) -> bool:
        """
        Pull `amount` of `token` from `holder` on behalf of `operator`.

        Returns:
            True if applied, False if rejected
        """
        if not self.is_operator(token, holder, operator):
            logger.warning(f"Rejected {token} pull from 0x{short_hex(holder)}: operator not approved")
            return False
        return self._move(token, holder, recipient, amount)

    def transfer(self, token: str, sender: bytes, recipient: bytes, amount: Encrypted) -> bool:
        """
        Push `amount` of `token` from `sender` to `recipient`.

        Returns:
            True if applied, False if rejected
        """
        return self._move(token, sender, recipient, amount)

    def _move(self, token: str, sender: bytes, recipient: bytes, amount: Encrypted) -> bool:
        if token not in self.tokens:
            logger.warning(f"Rejected transfer of unknown token {token}")
            return False

        sender_balance = self.balance_of(token, sender)
        covered = self.backend.ge(sender_balance, amount)
        self.backend.grant_decrypt_access(covered, self.address)
        if not self.backend.decrypt(covered, self.address):
            logger.warning(f"Rejected {token} transfer from 0x{short_hex(sender)}: insufficient balance")
            return False

        self._store(token, sender, self.backend.sub(sender_balance, amount))
        self._store(token, recipient, self.backend.add(self.balance_of(token, recipient), amount))
        self.transfers.append(TransferRecord(token, sender, recipient, amount))

        logger.debug(f"Transferred {token} 0x{short_hex(sender)} -> 0x{short_hex(recipient)} "
                     f"amount={short_hex(amount.handle)}")
        return True

    # =========================================================================
    # Checkpoints
    # =========================================================================

    def checkpoint(self) -> LedgerCheckpoint:
        """Capture current state for a later rollback()."""
        return LedgerCheckpoint(
            balances=dict(self.balances),
            operators=set(self.operators),
            transfer_count=len(self.transfers),
        )

    def rollback(self, checkpoint: LedgerCheckpoint) -> None:
        """Restore the state captured by checkpoint()."""
        self.balances = dict(checkpoint.balances)
        self.operators = set(checkpoint.operators)
        del self.transfers[checkpoint.transfer_count:]
        logger.debug(f"Rolled back to {checkpoint.transfer_count} transfers")

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        return f"ConfidentialLedger(tokens={len(self.tokens)}, accounts={len(self.balances)}, transfers={len(self.transfers)})"

    def stats(self) -> dict:
        """Get ledger statistics."""
        return {
            "token_count": len(self.tokens),
            "account_count": len(self.balances),
            "operator_count": len(self.operators),
            "transfer_count": len(self.transfers),
        }
