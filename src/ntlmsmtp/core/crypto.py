"""
ntlmsmtp Cryptographic Operations

Wrappers around established libraries for the primitives NTLMv1 needs:
single-block DES, MD4 and a random byte source.
Uses established libraries - NO custom cryptographic implementations.

Security:
- DES and MD4 are broken; they are only used for NTLMv1 compatibility
- No custom crypto - only library wrappers
"""

from __future__ import annotations

import secrets

from Crypto.Hash import MD4
from cryptography.hazmat.decrepit.ciphers.algorithms import TripleDES
from cryptography.hazmat.primitives.ciphers import Cipher, modes

from ntlmsmtp.core.exceptions import CryptoError


DES_BLOCK_SIZE = 8


# =============================================================================
# DES
# =============================================================================


def expand_des_key(key: bytes) -> bytes:
    """
    Expand a 7-byte (56-bit) key into an 8-byte DES key with parity bits.

    The 56 key bits are split into eight 7-bit groups; each group becomes
    the high bits of one output byte and the low bit is set for odd parity.

    Args:
        key: 7 bytes of key material (shorter input is zero-padded)

    Returns:
        8-byte DES key
    """
    if len(key) > 7:
        raise CryptoError(f"DES key material must be at most 7 bytes, got {len(key)}")

    bits = int.from_bytes(key.ljust(7, b"\x00"), "big")
    expanded = bytearray()
    for i in range(8):
        byte = ((bits >> (49 - 7 * i)) & 0x7F) << 1
        if bin(byte).count("1") % 2 == 0:
            byte |= 0x01
        expanded.append(byte)

    return bytes(expanded)


def des_encrypt_block(key: bytes, block: bytes) -> bytes:
    """
    Encrypt one 8-byte block with DES in ECB mode.

    The expanded key is repeated three times so TripleDES runs as single
    DES (K1 = K2 = K3) with the 24-byte key it requires.

    Args:
        key: 7-byte key material, expanded with parity bits
        block: 8-byte plaintext block

    Returns:
        8-byte ciphertext block
    """
    if len(block) != DES_BLOCK_SIZE:
        raise CryptoError(f"DES block must be {DES_BLOCK_SIZE} bytes, got {len(block)}")

    des_key = expand_des_key(key)
    cipher = Cipher(TripleDES(des_key * 3), modes.ECB())
    encryptor = cipher.encryptor()
    return encryptor.update(block) + encryptor.finalize()


# =============================================================================
# HASH FUNCTIONS
# =============================================================================


def md4_hash(data: bytes) -> bytes:
    """
    Compute MD4 hash (for NTLM).

    WARNING: MD4 is cryptographically broken. Only used for NTLM compatibility.
    hashlib only offers MD4 when OpenSSL's legacy provider is loaded, so
    pycryptodome's implementation is used instead.

    Args:
        data: Data to hash

    Returns:
        16-byte MD4 hash
    """
    return MD4.new(data).digest()


# =============================================================================
# RANDOMNESS
# =============================================================================


def secure_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes
    """
    return secrets.token_bytes(length)
