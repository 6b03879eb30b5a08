"""
ntlmsmtp NTLM Codec

Stateless encode/decode functions for the three NTLM messages and the
base64 text form they take inside SMTP command lines.
"""

from __future__ import annotations

import base64
import binascii
from typing import Optional

from ntlmsmtp.core.crypto import secure_random_bytes
from ntlmsmtp.core.exceptions import ProtocolError
from ntlmsmtp.ntlm.types import (
    AuthenticateMessage,
    NegotiateFlags,
    NegotiateMessage,
    ServerChallenge,
)


def encode_negotiate(
    domain: str = "",
    hostname: str = "",
    flags: Optional[int] = None,
) -> bytes:
    """
    Build a NEGOTIATE_MESSAGE.

    Empty domain or hostname fields are omitted and their *_SUPPLIED flag
    bits cleared; non-empty ones are appended after the header with
    matching security buffers.

    Args:
        domain: NT domain, may be empty
        hostname: Client workstation name, may be empty
        flags: Negotiate flags; the NTLMv1 defaults when None

    Returns:
        Message bytes
    """
    return NegotiateMessage.create(domain, hostname, flags).to_bytes()


def decode_negotiate(data: bytes) -> NegotiateMessage:
    return NegotiateMessage.from_bytes(data)


def encode_challenge(
    nonce: Optional[bytes] = None,
    flags: Optional[int] = None,
    target_name: str = "",
    target_info: bytes = b"",
    version: Optional[bytes] = None,
) -> bytes:
    """
    Build a CHALLENGE_MESSAGE, as a server would.

    Used for test fixtures and local servers. A random nonce is drawn
    when none is given.
    """
    if nonce is None:
        nonce = secure_random_bytes(8)
    if flags is None:
        flags = NegotiateFlags.default_server_flags()

    return ServerChallenge(
        nonce=nonce,
        negotiate_flags=flags,
        target_name=target_name,
        target_info=target_info,
        version=version,
    ).to_bytes()


def decode_challenge(data: bytes) -> ServerChallenge:
    """
    Parse a CHALLENGE_MESSAGE.

    Raises:
        MalformedMessage: Short buffer, wrong signature, type other than 2,
            or a security buffer pointing outside the message
    """
    return ServerChallenge.from_bytes(data)


def encode_authenticate(
    username: str,
    domain: str,
    hostname: str,
    lm_response: bytes,
    nt_response: bytes,
    flags: int,
) -> bytes:
    """
    Build an NTLMv1 AUTHENTICATE_MESSAGE.

    Names are encoded as UTF-16LE when ``flags`` carries NEGOTIATE_UNICODE
    and in the OEM code page otherwise.
    """
    return AuthenticateMessage(
        lm_response=lm_response,
        nt_response=nt_response,
        domain_name=domain,
        user_name=username,
        workstation_name=hostname,
        negotiate_flags=flags,
    ).to_bytes()


def decode_authenticate(data: bytes) -> AuthenticateMessage:
    return AuthenticateMessage.from_bytes(data)


# =============================================================================
# BASE64 WRAPPING
# =============================================================================


def to_base64(data: bytes) -> str:
    """Encode message bytes for an SMTP command line."""
    return base64.b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
    """
    Decode the base64 text of an SMTP reply.

    Raises:
        ProtocolError: If the text is not valid base64
    """
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(f"Invalid base64 in server reply: {e}") from e
