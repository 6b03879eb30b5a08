"""
ntlmsmtp - NTLMv1 authentication for SMTP

Authenticates an SMTP session with `AUTH NTLM` using the NTLMv1
challenge/response scheme (MS-NLMP), for legacy mail servers that
accept nothing else.

Components:
- ntlm: Message codec, LM/NT responses and the handshake state machine
- smtp: Line transport and the SMTP client
- core: Credentials, exceptions, crypto wrappers, state machine

Example Usage:
    from ntlmsmtp import NtlmSMTP

    client = NtlmSMTP.from_options(
        "mail.example.com",
        25,
        {"domain": "CORP", "username": "jdoe", "password": "secret"},
    )
    with client:
        client.auth()

        # Transition history of the handshake
        trace = client.handshake.export_trace_json()

WARNING: NTLMv1 is cryptographically weak. Prefer any stronger mechanism
the server offers.
"""

from ntlmsmtp.core.types import Credentials
from ntlmsmtp.core.exceptions import (
    SmtpNtlmError,
    SMTPConnectionError,
    UnexpectedStatus,
    ProtocolError,
    MalformedMessage,
    CryptoError,
    StateError,
    AlreadyAuthenticated,
)
from ntlmsmtp.ntlm.handshake import NTLMHandshake, authenticate
from ntlmsmtp.ntlm.types import NTLMState
from ntlmsmtp.smtp.client import NtlmSMTP, SMTPConfig
from ntlmsmtp.smtp.transport import SMTPTransport

__version__ = "0.1.0"

__all__ = [
    # Main API
    "NtlmSMTP",
    "SMTPConfig",
    "SMTPTransport",
    "NTLMHandshake",
    "authenticate",
    # Types
    "Credentials",
    "NTLMState",
    # Exceptions
    "SmtpNtlmError",
    "SMTPConnectionError",
    "UnexpectedStatus",
    "ProtocolError",
    "MalformedMessage",
    "CryptoError",
    "StateError",
    "AlreadyAuthenticated",
    # Metadata
    "__version__",
]
