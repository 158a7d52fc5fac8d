"""
Cryptographic primitives for OCP.

This module provides:
- Hashing functions (SHA-256, Keccak-256)
- Key generation and principal addresses
- Recoverable ECDSA signatures on secp256k1

Design Notes:
-------------
Principals (auction owners, bidders, the engine itself) are identified by
20-byte Ethereum-style addresses. Encrypted inputs are bound to the principal
that submits them with a recoverable signature, so the engine can check the
binding from the address alone without a public key directory.

The homomorphic value type lives in ocp.crypto.fhe.
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional

from Crypto.Hash import keccak
from py_ecc.secp256k1 import secp256k1


# =============================================================================
# Constants
# =============================================================================

# secp256k1 curve order (number of points on the curve)
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

ADDRESS_SIZE = 20
SIGNATURE_SIZE = 65


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 hash."""
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).
    
    Used for: address derivation and input-proof digests.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Key Generation
# =============================================================================


@dataclass
class KeyPair:
    """
    An ECDSA keypair on secp256k1.
    
    Attributes:
        private_key: 32-byte secret key
        public_key: 64-byte uncompressed public key (x || y coordinates)
    """
    private_key: bytes
    public_key: bytes

    @property
    def address(self) -> bytes:
        """20-byte principal address for this keypair."""
        return address_from_public_key(self.public_key)


def _point_to_bytes(point) -> bytes:
    return point[0].to_bytes(32, byteorder="big") + point[1].to_bytes(32, byteorder="big")


def generate_keypair() -> KeyPair:
    """Generate a new random keypair."""
    private_key_int = secrets.randbelow(SECP256K1_ORDER - 1) + 1
    private_key = private_key_int.to_bytes(32, byteorder="big")
    public_key = _point_to_bytes(secp256k1.privtopub(private_key))
    return KeyPair(private_key=private_key, public_key=public_key)


def address_from_public_key(public_key: bytes) -> bytes:
    """
    Derive address from public key (Ethereum-style).
    
    address = keccak256(public_key)[-20:]
    """
    if len(public_key) != 64:
        raise ValueError("Public key must be 64 bytes")
    return keccak256(public_key)[-ADDRESS_SIZE:]


# =============================================================================
# Digital Signatures (recoverable ECDSA)
# =============================================================================


def sign(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Sign a message hash using ECDSA on secp256k1.
    
    Args:
        message_hash: 32-byte hash of the message to sign
        private_key: 32-byte private key
        
    Returns:
        65-byte signature (r || s || v)
    """
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    v, r, s = secp256k1.ecdsa_raw_sign(message_hash, private_key)
    return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big") + bytes([v])


def recover_address(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """
    Recover the signer's address from a signature.
    
    Returns:
        20-byte address, or None if the signature is malformed
    """
    if len(message_hash) != 32 or len(signature) != SIGNATURE_SIZE:
        return None

    r = int.from_bytes(signature[:32], byteorder="big")
    s = int.from_bytes(signature[32:64], byteorder="big")
    v = signature[64]
    if not (1 <= r < SECP256K1_ORDER and 1 <= s < SECP256K1_ORDER) or v not in (27, 28):
        return None

    try:
        recovered = secp256k1.ecdsa_raw_recover(message_hash, (v, r, s))
    except Exception:
        return None
    if not recovered:
        return None
    return address_from_public_key(_point_to_bytes(recovered))


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def short_hex(data: bytes, length: int = 8) -> str:
    """Truncated hex for log lines."""
    return data.hex()[:length]
