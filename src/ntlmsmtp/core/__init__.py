"""
ntlmsmtp Core Module

Provides foundational types and abstractions used by the NTLM handshake
and the SMTP client.

Components:
- types: Credentials value type
- state_machine: Table-driven state machine with invariant checking
- crypto: DES, MD4 and random byte wrappers
- exceptions: Custom exception types
"""

from ntlmsmtp.core.types import Credentials
from ntlmsmtp.core.state_machine import StateMachine, Transition
from ntlmsmtp.core.exceptions import (
    SmtpNtlmError,
    SMTPConnectionError,
    UnexpectedStatus,
    ProtocolError,
    MalformedMessage,
    CryptoError,
    StateError,
    AlreadyAuthenticated,
    InvariantViolation,
)

__all__ = [
    # Types
    "Credentials",
    # State Machine
    "StateMachine",
    "Transition",
    # Exceptions
    "SmtpNtlmError",
    "SMTPConnectionError",
    "UnexpectedStatus",
    "ProtocolError",
    "MalformedMessage",
    "CryptoError",
    "StateError",
    "AlreadyAuthenticated",
    "InvariantViolation",
]
