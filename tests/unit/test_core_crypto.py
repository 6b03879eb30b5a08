"""
Unit tests for ntlmsmtp.core.crypto module.

Tests the DES, MD4 and random byte wrappers used by NTLMv1.
"""

import warnings

import pytest
from cryptography.utils import CryptographyDeprecationWarning

from ntlmsmtp.core.crypto import (
    DES_BLOCK_SIZE,
    des_encrypt_block,
    expand_des_key,
    md4_hash,
    secure_random_bytes,
)
from ntlmsmtp.core.exceptions import CryptoError


class TestDESKeyExpansion:
    """Tests for 7-byte to 8-byte DES key expansion."""

    def test_zero_key(self):
        """Test all-zero key material gets only parity bits."""
        assert expand_des_key(b"\x00" * 7) == b"\x01" * 8

    def test_all_ones_key(self):
        """Test all-ones key material already has odd parity."""
        assert expand_des_key(b"\xff" * 7) == b"\xfe" * 8

    def test_every_byte_has_odd_parity(self):
        """Test each expanded byte has an odd number of set bits."""
        key = expand_des_key(b"KGS!@#$")
        assert len(key) == 8
        for byte in key:
            assert bin(byte).count("1") % 2 == 1

    def test_key_bits_preserved(self):
        """Test the high 7 bits of each byte carry the original 56 bits."""
        material = bytes.fromhex("0123456789abcd")
        expanded = expand_des_key(material)

        bits = 0
        for byte in expanded:
            bits = (bits << 7) | (byte >> 1)
        assert bits.to_bytes(7, "big") == material

    def test_short_key_zero_padded(self):
        """Test shorter key material is padded with zero bytes."""
        assert expand_des_key(b"\xff") == expand_des_key(b"\xff" + b"\x00" * 6)

    def test_long_key_rejected(self):
        """Test key material longer than 7 bytes is rejected."""
        with pytest.raises(CryptoError):
            expand_des_key(b"\x00" * 8)


class TestDESEncryption:
    """Tests for single-block DES encryption."""

    def test_lm_magic_with_zero_key(self):
        """Test DES of KGS!@#$% under a zero key (empty LM hash half)."""
        assert des_encrypt_block(b"\x00" * 7, b"KGS!@#$%") == bytes.fromhex("aad3b435b51404ee")

    def test_output_is_one_block(self):
        """Test ciphertext is exactly one DES block."""
        result = des_encrypt_block(b"\x01" * 7, b"\x00" * 8)
        assert len(result) == DES_BLOCK_SIZE

    def test_deterministic(self):
        """Test same key and block give the same ciphertext."""
        key = bytes.fromhex("0123456789abcd")
        block = bytes.fromhex("0011223344556677")
        assert des_encrypt_block(key, block) == des_encrypt_block(key, block)

    def test_different_keys_differ(self):
        """Test different keys give different ciphertexts."""
        block = b"\x00" * 8
        assert des_encrypt_block(b"\x00" * 7, block) != des_encrypt_block(b"\x02" * 7, block)

    def test_no_deprecation_warning(self):
        """Test the single-DES key is passed to TripleDES at full length."""
        with warnings.catch_warnings():
            warnings.simplefilter("error", CryptographyDeprecationWarning)
            result = des_encrypt_block(b"\x00" * 7, b"KGS!@#$%")

        assert result == bytes.fromhex("aad3b435b51404ee")

    @pytest.mark.parametrize("length", [0, 7, 9, 16])
    def test_wrong_block_length_rejected(self, length):
        """Test blocks other than 8 bytes are rejected."""
        with pytest.raises(CryptoError):
            des_encrypt_block(b"\x00" * 7, b"\x00" * length)


class TestMD4:
    """Tests for MD4 hashing."""

    def test_empty_input(self):
        """Test MD4 of empty input (RFC 1320)."""
        assert md4_hash(b"") == bytes.fromhex("31d6cfe0d16ae931b73c59d7e0c089c0")

    def test_abc(self):
        """Test MD4 of 'abc' (RFC 1320)."""
        assert md4_hash(b"abc") == bytes.fromhex("a448017aaf21d8525fc10ae87aa6729d")

    def test_digest_length(self):
        """Test MD4 digest is 16 bytes."""
        assert len(md4_hash(b"x" * 1000)) == 16


class TestRandomBytes:
    """Tests for random byte generation."""

    def test_length(self):
        """Test requested number of bytes is returned."""
        assert len(secure_random_bytes(8)) == 8

    def test_values_differ(self):
        """Test two draws are not equal."""
        assert secure_random_bytes(16) != secure_random_bytes(16)
