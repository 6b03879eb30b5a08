"""
ntlmsmtp NTLMv1 Responses

LM and NT one-way functions and the DES-based challenge response
(MS-NLMP 3.3.1, NTLM v1 authentication without extended session security).

All functions are pure: the responses depend only on the password and
the 8-byte server nonce.
"""

from __future__ import annotations

from ntlmsmtp.core.crypto import des_encrypt_block, md4_hash
from ntlmsmtp.core.exceptions import CryptoError
from ntlmsmtp.ntlm.types import NtlmResponse, encode_oem


LM_MAGIC = b"KGS!@#$%"
LM_PASSWORD_LENGTH = 14
HASH_LENGTH = 16
NONCE_LENGTH = 8


def lm_hash(password: str) -> bytes:
    """
    Compute the LM hash (LMOWFv1).

    The password is upper-cased, OEM-encoded and truncated or zero-padded
    to 14 bytes. Each 7-byte half keys a DES encryption of ``KGS!@#$%``.
    Truncation of longer passwords is part of the legacy algorithm.

    Returns:
        16-byte LM hash
    """
    key = encode_oem(password.upper())[:LM_PASSWORD_LENGTH].ljust(LM_PASSWORD_LENGTH, b"\x00")
    return des_encrypt_block(key[:7], LM_MAGIC) + des_encrypt_block(key[7:], LM_MAGIC)


def nt_hash(password: str) -> bytes:
    """
    Compute the NT hash (NTOWFv1).

    NT Hash = MD4(UTF-16LE(password))

    Returns:
        16-byte NT hash
    """
    return md4_hash(password.encode("utf-16-le"))


def challenge_response(password_hash: bytes, nonce: bytes) -> bytes:
    """
    Compute a 24-byte DES challenge response from a 16-byte hash.

    The hash is zero-padded to 21 bytes and split into three 7-byte DES
    keys, each encrypting the server nonce.

    Args:
        password_hash: 16-byte LM or NT hash
        nonce: 8-byte server challenge

    Returns:
        24-byte response
    """
    if len(password_hash) != HASH_LENGTH:
        raise CryptoError(f"Password hash must be {HASH_LENGTH} bytes, got {len(password_hash)}")
    if len(nonce) != NONCE_LENGTH:
        raise CryptoError(f"Server challenge must be {NONCE_LENGTH} bytes, got {len(nonce)}")

    key = password_hash.ljust(21, b"\x00")
    return b"".join(des_encrypt_block(key[i : i + 7], nonce) for i in (0, 7, 14))


def compute_ntlm_v1_response(password: str, nonce: bytes) -> NtlmResponse:
    """
    Compute the LM and NT challenge responses for an AUTHENTICATE message.

    Args:
        password: Plaintext password (may be empty)
        nonce: 8-byte server challenge

    Returns:
        NtlmResponse with 24-byte lm_response and nt_response
    """
    return NtlmResponse(
        lm_response=challenge_response(lm_hash(password), nonce),
        nt_response=challenge_response(nt_hash(password), nonce),
    )
