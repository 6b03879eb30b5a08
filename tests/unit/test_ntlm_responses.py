"""
Unit tests for ntlmsmtp.ntlm.responses module.

Known-answer values come from MS-NLMP 4.2.2 (password "Password",
server challenge 0123456789abcdef).
"""

import pytest

from ntlmsmtp.core.exceptions import CryptoError
from ntlmsmtp.ntlm.responses import (
    challenge_response,
    compute_ntlm_v1_response,
    lm_hash,
    nt_hash,
)
from ntlmsmtp.ntlm.types import NtlmResponse

from tests.conftest import VECTOR_NONCE, VECTOR_PASSWORD


class TestLMHash:
    """Tests for the LM one-way function."""

    def test_known_value(self):
        """Test LM hash of the MS-NLMP sample password."""
        assert lm_hash(VECTOR_PASSWORD) == bytes.fromhex("e52cac67419a9a224a3b108f3fa6cb6d")

    def test_case_insensitive(self):
        """Test the password is upper-cased before hashing."""
        assert lm_hash("password") == lm_hash("PASSWORD") == lm_hash(VECTOR_PASSWORD)

    def test_empty_password(self):
        """Test the well-known LM hash of an empty password."""
        assert lm_hash("") == bytes.fromhex("aad3b435b51404eeaad3b435b51404ee")

    def test_truncated_to_14_characters(self):
        """Test characters past the 14th do not affect the LM hash."""
        assert lm_hash("ABCDEFGHIJKLMN") == lm_hash("ABCDEFGHIJKLMNOPQRSTUVWXYZ")

    def test_length(self):
        """Test LM hash is 16 bytes."""
        assert len(lm_hash("secret")) == 16


class TestNTHash:
    """Tests for the NT one-way function."""

    def test_known_value(self):
        """Test NT hash of the MS-NLMP sample password."""
        assert nt_hash(VECTOR_PASSWORD) == bytes.fromhex("a4f49c406510bdcab6824ee7c30fd852")

    def test_lowercase_password(self):
        """Test NT hash of 'password'."""
        assert nt_hash("password") == bytes.fromhex("8846f7eaee8fb117ad06bdd830b7586c")

    def test_case_sensitive(self):
        """Test NT hash distinguishes case, unlike LM."""
        assert nt_hash("password") != nt_hash("PASSWORD")

    def test_empty_password(self):
        """Test NT hash of an empty password."""
        assert nt_hash("") == bytes.fromhex("31d6cfe0d16ae931b73c59d7e0c089c0")

    def test_not_truncated(self):
        """Test long passwords are hashed in full."""
        assert nt_hash("A" * 14) != nt_hash("A" * 15)


class TestChallengeResponse:
    """Tests for the DES challenge response."""

    def test_nt_response_known_value(self):
        """Test NTLMv1 response of the MS-NLMP sample."""
        response = challenge_response(nt_hash(VECTOR_PASSWORD), VECTOR_NONCE)
        assert response == bytes.fromhex("67c43011f30298a2ad35ece64f16331c44bdbed927841f94")

    def test_lm_response_known_value(self):
        """Test LMv1 response of the MS-NLMP sample."""
        response = challenge_response(lm_hash(VECTOR_PASSWORD), VECTOR_NONCE)
        assert response == bytes.fromhex("98def7b87f88aa5dafe2df779688a172def11c7d5ccdef13")

    def test_response_length(self):
        """Test response is three DES blocks."""
        assert len(challenge_response(b"\x00" * 16, b"\x00" * 8)) == 24

    @pytest.mark.parametrize("length", [0, 15, 17, 21])
    def test_wrong_hash_length_rejected(self, length):
        """Test hashes other than 16 bytes are rejected."""
        with pytest.raises(CryptoError):
            challenge_response(b"\x00" * length, VECTOR_NONCE)

    @pytest.mark.parametrize("length", [0, 7, 9])
    def test_wrong_nonce_length_rejected(self, length):
        """Test challenges other than 8 bytes are rejected."""
        with pytest.raises(CryptoError):
            challenge_response(b"\x00" * 16, b"\x00" * length)


class TestComputeResponses:
    """Tests for compute_ntlm_v1_response."""

    def test_known_values(self):
        """Test both responses for the MS-NLMP sample."""
        response = compute_ntlm_v1_response(VECTOR_PASSWORD, VECTOR_NONCE)
        assert isinstance(response, NtlmResponse)
        assert response.nt_response.hex() == "67c43011f30298a2ad35ece64f16331c44bdbed927841f94"
        assert response.lm_response.hex() == "98def7b87f88aa5dafe2df779688a172def11c7d5ccdef13"

    def test_empty_password(self):
        """Test an empty password still yields 24-byte responses."""
        response = compute_ntlm_v1_response("", bytes(range(8)))
        assert len(response.lm_response) == 24
        assert len(response.nt_response) == 24

    def test_nonce_changes_responses(self):
        """Test a different challenge gives different responses."""
        first = compute_ntlm_v1_response("secret", VECTOR_NONCE)
        second = compute_ntlm_v1_response("secret", bytes(range(8)))
        assert first.nt_response != second.nt_response
        assert first.lm_response != second.lm_response

    def test_responses_not_in_repr(self):
        """Test response bytes are kept out of repr()."""
        response = compute_ntlm_v1_response("secret", VECTOR_NONCE)
        assert "nt_response" not in repr(response)

    def test_response_length_validated(self):
        """Test NtlmResponse rejects responses of the wrong size."""
        with pytest.raises(ValueError):
            NtlmResponse(lm_response=b"\x00" * 24, nt_response=b"\x00" * 16)
