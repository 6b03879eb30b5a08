"""
Pytest configuration and shared fixtures for ntlmsmtp tests.
"""

import socket
from typing import List, Optional, Tuple

import pytest

from ntlmsmtp.core.exceptions import SMTPConnectionError, UnexpectedStatus
from ntlmsmtp.core.types import Credentials
from ntlmsmtp.ntlm.codec import encode_challenge, to_base64
from ntlmsmtp.ntlm.types import NegotiateFlags


# MS-NLMP 4.2.1 sample values
VECTOR_PASSWORD = "Password"
VECTOR_NONCE = bytes.fromhex("0123456789abcdef")


# =============================================================================
# CREDENTIAL FIXTURES
# =============================================================================


@pytest.fixture
def credentials() -> Credentials:
    """Credentials matching the MS-NLMP sample exchange."""
    return Credentials(
        username="User",
        password=VECTOR_PASSWORD,
        domain="Domain",
        hostname="COMPUTER",
    )


@pytest.fixture
def bare_credentials() -> Credentials:
    """Credentials without domain or workstation."""
    return Credentials(username="jdoe", password="secret")


# =============================================================================
# TRANSPORT FIXTURES
# =============================================================================


class FakeTransport:
    """
    Scripted transport: records sent lines and answers expect() from a
    queue of (code, text) replies.
    """

    def __init__(
        self,
        replies: Optional[List[Tuple[int, str]]] = None,
        fail_on_send: Optional[int] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.sent: List[str] = []
        self.fail_on_send = fail_on_send
        self.authenticated = False

    def send(self, line: str) -> None:
        if self.fail_on_send is not None and len(self.sent) == self.fail_on_send:
            raise SMTPConnectionError("Connection reset by peer")
        self.sent.append(line)

    def expect(self, code: int) -> str:
        if not self.replies:
            raise SMTPConnectionError("Connection closed by SMTP server")
        actual, text = self.replies.pop(0)
        if actual != code:
            raise UnexpectedStatus(expected=code, actual=actual, text=text)
        return text


@pytest.fixture
def socket_pair():
    """Connected (client, server) socket pair, closed after the test."""
    client, server = socket.socketpair()
    yield client, server
    client.close()
    server.close()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def make_challenge_b64(
    nonce: bytes = VECTOR_NONCE,
    flags: Optional[int] = None,
    target_name: str = "Domain",
    target_info: bytes = b"",
) -> str:
    """Helper to build the base64 text of a 334 challenge reply."""
    if flags is None:
        flags = NegotiateFlags.default_server_flags()
    return to_base64(
        encode_challenge(
            nonce=nonce,
            flags=flags,
            target_name=target_name,
            target_info=target_info,
        )
    )


def read_lines(sock: socket.socket, count: int) -> List[str]:
    """Helper to read ``count`` CRLF-terminated lines written by the client."""
    with sock.makefile("rb") as reader:
        return [reader.readline().rstrip(b"\r\n").decode("utf-8") for _ in range(count)]


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real SMTP server"
    )
