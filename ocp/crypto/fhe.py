"""
Encrypted Values - Opaque homomorphic operands for OCP.

Conceptual Background:
---------------------
The auction engine never sees a plaintext bid. It holds `Encrypted` handles
and asks a backend to combine them:

    add / sub / mul        euint64 x euint64 -> euint64  (wrapping mod 2^64)
    lt / gt / ge           euint64 x euint64 -> ebool
    and_                   ebool   x ebool   -> ebool
    select(c, a, b)        ebool   x T x T   -> T        (a if c else b)

Every operation returns a fresh handle, including select, so the output of a
select cannot be linked to either input by comparing handles.

Host-language branching on an Encrypted value raises TypeError. The only way
to make a data-dependent decision is select().

Reference Backend:
-----------------
SimulatedBackend models a coprocessor: plaintexts live in a private handle
store that callers cannot read except through ACL-gated decrypt(). Client
inputs are AES-GCM ciphertexts under the network key, bound to the sender and
the receiving contract with a recoverable secp256k1 signature.

Each operation is appended to `trace` (operation name and operand kinds only),
which lets tests compare the control flow of runs over different plaintexts.
"""

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Set

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from ocp.crypto import KeyPair, keccak256, recover_address, sign, short_hex
from ocp.core.errors import AccessDeniedError, InvalidInputProofError
from ocp.utils.logger import get_logger

logger = get_logger("fhe")


# =============================================================================
# Constants
# =============================================================================

EUINT64 = "euint64"
EBOOL = "ebool"

U64_MAX = 2**64 - 1

HANDLE_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

# Domain separator for input proofs
DOMAIN_INPUT_PROOF = b"OCP:input:v1"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class Encrypted:
    """
    Opaque handle to an encrypted value.

    Equality compares handles, never plaintexts.
    """
    handle: bytes
    kind: str = EUINT64

    def __bool__(self):
        raise TypeError("Encrypted values cannot be branched on; use select()")

    def __int__(self):
        raise TypeError("Encrypted values have no host-side integer value")

    __index__ = __int__

    def __repr__(self) -> str:
        return f"Encrypted({self.kind}, {short_hex(self.handle)}...)"


@dataclass(frozen=True)
class InputCiphertext:
    """
    A client-encrypted input plus its proof.

    Attributes:
        ciphertext: nonce || tag || AES-GCM ciphertext of the 8-byte value
        proof: 65-byte signature binding ciphertext, sender and contract
    """
    ciphertext: bytes
    proof: bytes
    kind: str = EUINT64


def input_proof_digest(ciphertext: bytes, sender: bytes, contract: bytes) -> bytes:
    """Digest signed by the sender to bind an input to a contract."""
    return keccak256(DOMAIN_INPUT_PROOF + contract + sender + ciphertext)


# =============================================================================
# Backend Interface
# =============================================================================


class EncryptedBackend(ABC):
    """
    Closed operation set over encrypted 64-bit unsigned values.

    Implementations must be data-oblivious: the work done by each operation
    may not depend on operand plaintexts.
    """

    @abstractmethod
    def encrypt(self, plaintext: int) -> Encrypted:
        """Trivially encrypt a public constant."""

    @abstractmethod
    def verify_and_decrypt_input(
        self,
        ciphertext: InputCiphertext,
        sender: bytes,
        contract: bytes,
    ) -> Encrypted:
        """Check an input proof and import the ciphertext as a handle."""

    @abstractmethod
    def add(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def sub(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def mul(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def lt(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def gt(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def ge(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def and_(self, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def select(self, cond: Encrypted, a: Encrypted, b: Encrypted) -> Encrypted: ...

    @abstractmethod
    def grant_decrypt_access(self, value: Encrypted, principal: bytes) -> None: ...

    @abstractmethod
    def has_access(self, value: Encrypted, principal: bytes) -> bool: ...

    @abstractmethod
    def decrypt(self, value: Encrypted, principal: bytes) -> int:
        """Decrypt for a principal holding a grant on the handle."""


# =============================================================================
# Simulated Backend
# =============================================================================


class SimulatedBackend(EncryptedBackend):
    """
    In-process coprocessor simulation.

    Attributes:
        trace: Ordered log of operations performed (names and kinds only)
    """

    def __init__(self, network_key: bytes = None):
        """
        Initialize the backend.

        Args:
            network_key: 32-byte AES key shared with clients. Random if None.
        """
        self._network_key = network_key or get_random_bytes(32)
        self._store: Dict[bytes, int] = {}
        self._acl: Dict[bytes, Set[bytes]] = {}
        self.trace: List[str] = []

    # =========================================================================
    # Handle Store
    # =========================================================================

    def _new(self, value: int, kind: str) -> Encrypted:
        handle = secrets.token_bytes(HANDLE_SIZE)
        self._store[handle] = value
        return Encrypted(handle=handle, kind=kind)

    def _load(self, value: Encrypted, kind: str) -> int:
        if not isinstance(value, Encrypted):
            raise TypeError(f"Expected Encrypted operand, got {type(value).__name__}")
        if value.kind != kind:
            raise TypeError(f"Expected {kind} operand, got {value.kind}")
        if value.handle not in self._store:
            raise ValueError(f"Unknown handle {short_hex(value.handle)}")
        return self._store[value.handle]

    def _record(self, op: str, *kinds: str) -> None:
        self.trace.append(f"{op}({','.join(kinds)})")

    @property
    def handle_count(self) -> int:
        """Number of live handles."""
        return len(self._store)

    def reset_trace(self) -> None:
        self.trace.clear()

    # =========================================================================
    # Inputs
    # =========================================================================

    def encrypt(self, plaintext: int) -> Encrypted:
        if not 0 <= plaintext <= U64_MAX:
            raise ValueError(f"Plaintext out of uint64 range: {plaintext}")
        self._record("encrypt", EUINT64)
        return self._new(plaintext, EUINT64)

    def encrypt_input(
        self,
        plaintext: int,
        keypair: KeyPair,
        contract: bytes,
    ) -> InputCiphertext:
        """
        Client-side encryption of a uint64 input bound to a contract.

        Args:
            plaintext: Value to encrypt
            keypair: Sender's keypair (signs the proof)
            contract: Address of the contract that will consume the input

        Returns:
            InputCiphertext ready for verify_and_decrypt_input()
        """
        if not 0 <= plaintext <= U64_MAX:
            raise ValueError(f"Plaintext out of uint64 range: {plaintext}")

        nonce = get_random_bytes(NONCE_SIZE)
        cipher = AES.new(self._network_key, AES.MODE_GCM, nonce=nonce)
        body, tag = cipher.encrypt_and_digest(plaintext.to_bytes(8, byteorder="big"))
        ciphertext = nonce + tag + body

        digest = input_proof_digest(ciphertext, keypair.address, contract)
        return InputCiphertext(ciphertext=ciphertext, proof=sign(digest, keypair.private_key))

    def verify_and_decrypt_input(
        self,
        ciphertext: InputCiphertext,
        sender: bytes,
        contract: bytes,
    ) -> Encrypted:
        if ciphertext.kind != EUINT64:
            raise InvalidInputProofError(f"Unsupported input kind {ciphertext.kind}")

        digest = input_proof_digest(ciphertext.ciphertext, sender, contract)
        if recover_address(digest, ciphertext.proof) != sender:
            raise InvalidInputProofError(f"Input proof not signed by 0x{sender.hex()}")

        raw = ciphertext.ciphertext
        if len(raw) != NONCE_SIZE + TAG_SIZE + 8:
            raise InvalidInputProofError(f"Malformed ciphertext of {len(raw)} bytes")

        nonce, tag, body = raw[:NONCE_SIZE], raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE], raw[NONCE_SIZE + TAG_SIZE:]
        cipher = AES.new(self._network_key, AES.MODE_GCM, nonce=nonce)
        try:
            plaintext = cipher.decrypt_and_verify(body, tag)
        except ValueError as e:
            raise InvalidInputProofError("Ciphertext authentication failed") from e

        self._record("verify_input", EUINT64)
        value = self._new(int.from_bytes(plaintext, byteorder="big"), EUINT64)
        logger.debug(f"Imported input {short_hex(value.handle)} from 0x{short_hex(sender)}")
        return value

    # =========================================================================
    # Arithmetic
    # =========================================================================

    def add(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("add", EUINT64, EUINT64)
        return self._new((x + y) & U64_MAX, EUINT64)

    def sub(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("sub", EUINT64, EUINT64)
        return self._new((x - y) & U64_MAX, EUINT64)

    def mul(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("mul", EUINT64, EUINT64)
        return self._new((x * y) & U64_MAX, EUINT64)

    # =========================================================================
    # Comparison and Selection
    # =========================================================================

    def lt(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("lt", EUINT64, EUINT64)
        return self._new(int(x < y), EBOOL)

    def gt(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("gt", EUINT64, EUINT64)
        return self._new(int(x > y), EBOOL)

    def ge(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EUINT64), self._load(b, EUINT64)
        self._record("ge", EUINT64, EUINT64)
        return self._new(int(x >= y), EBOOL)

    def and_(self, a: Encrypted, b: Encrypted) -> Encrypted:
        x, y = self._load(a, EBOOL), self._load(b, EBOOL)
        self._record("and", EBOOL, EBOOL)
        return self._new(x & y, EBOOL)

    def select(self, cond: Encrypted, a: Encrypted, b: Encrypted) -> Encrypted:
        c = self._load(cond, EBOOL)
        if not isinstance(a, Encrypted) or not isinstance(b, Encrypted):
            raise TypeError("select branches must be Encrypted")
        if a.kind != b.kind:
            raise TypeError(f"select branches must share a kind, got {a.kind} and {b.kind}")
        x = self._load(a, a.kind)
        y = self._load(b, a.kind)
        self._record("select", EBOOL, a.kind, b.kind)
        # Arithmetic mux; both branches are always read
        return self._new(c * x + (1 - c) * y, a.kind)

    # =========================================================================
    # Access Control
    # =========================================================================

    def grant_decrypt_access(self, value: Encrypted, principal: bytes) -> None:
        self._load(value, value.kind)
        self._acl.setdefault(value.handle, set()).add(principal)

    def has_access(self, value: Encrypted, principal: bytes) -> bool:
        return principal in self._acl.get(value.handle, ())

    def decrypt(self, value: Encrypted, principal: bytes) -> int:
        plaintext = self._load(value, value.kind)
        if not self.has_access(value, principal):
            raise AccessDeniedError(
                f"0x{principal.hex()} may not decrypt {short_hex(value.handle)}"
            )
        return plaintext
