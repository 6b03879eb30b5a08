"""
ntlmsmtp Exception Types

Errors raised or returned while authenticating an SMTP session with NTLM.
"""

from typing import Optional


class SmtpNtlmError(Exception):
    """Base exception for all ntlmsmtp errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class SMTPConnectionError(SmtpNtlmError):
    """
    Transport I/O failure.

    The connection to the SMTP server could not be opened, was dropped,
    or timed out while sending or reading a line.
    """

    pass


class UnexpectedStatus(SmtpNtlmError):
    """
    The server answered with a status code other than the expected one.

    Carries the expected code, the code actually received and the
    server's reply text.
    """

    def __init__(self, expected: int, actual: int, text: str = "") -> None:
        message = f"Expected SMTP status {expected}, got {actual}"
        if text:
            message = f"{message}: {text}"
        super().__init__(message, code=actual)
        self.expected = expected
        self.actual = actual
        self.text = text


class ProtocolError(SmtpNtlmError):
    """
    Protocol-level error.

    Raised when a server reply cannot be interpreted, for instance a
    challenge line that is not valid base64.
    """

    pass


class MalformedMessage(ProtocolError):
    """
    An NTLM message failed signature, type or length validation.
    """

    pass


class CryptoError(SmtpNtlmError):
    """
    Cryptographic operation failed.

    Raised for wrong key, hash or challenge lengths handed to the
    NTLMv1 primitives.
    """

    pass


class StateError(SmtpNtlmError):
    """
    Invalid state transition.

    This indicates an attempt to perform an operation that is
    not valid in the current handshake state.
    """

    pass


class AlreadyAuthenticated(StateError):
    """Authentication was requested again after it already succeeded."""

    def __init__(self, message: str = "Connection is already authenticated") -> None:
        super().__init__(message)


class InvariantViolation(SmtpNtlmError):
    """
    Handshake invariant was violated.

    This is a programming error: the state machine was about to enter
    a state that its registered invariants forbid.
    """

    pass
