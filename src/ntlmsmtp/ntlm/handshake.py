"""
ntlmsmtp NTLM Handshake

SMTP `AUTH NTLM` exchange driving the NTLMv1 three-message handshake:

    C: AUTH NTLM <base64 NEGOTIATE>
    S: 334 <base64 CHALLENGE>
    C: <base64 AUTHENTICATE>
    S: 235 Authentication successful

States:
- IDLE: Nothing sent yet
- NEGOTIATE_SENT: Sent NEGOTIATE, waiting for 334 + CHALLENGE
- CHALLENGE_RECEIVED: Valid CHALLENGE parsed
- AUTHENTICATE_SENT: Sent AUTHENTICATE, waiting for 235
- AUTHENTICATED: Server accepted the credentials
- FAILED: Any step failed; terminal for this attempt

No step is retried. A failed handshake cannot be run again; callers
start a fresh one. A failure that leaves the server waiting for a
continuation line cancels the exchange with "*" (RFC 4954), so the
connection is back at the command prompt afterwards.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, runtime_checkable

import attrs
import structlog
from returns.result import Failure, Result, Success

from ntlmsmtp.core.exceptions import (
    AlreadyAuthenticated,
    CryptoError,
    MalformedMessage,
    ProtocolError,
    SMTPConnectionError,
    SmtpNtlmError,
    StateError,
    UnexpectedStatus,
)
from ntlmsmtp.core.state_machine import StateMachine, TransitionTable
from ntlmsmtp.core.types import Credentials
from ntlmsmtp.ntlm.codec import (
    decode_challenge,
    encode_authenticate,
    encode_negotiate,
    from_base64,
    to_base64,
)
from ntlmsmtp.ntlm.responses import compute_ntlm_v1_response
from ntlmsmtp.ntlm.types import (
    AuthenticateSent,
    AuthenticationAccepted,
    ChallengeReceived,
    HandshakeContext,
    HandshakeFailed,
    NegotiateFlags,
    NegotiateSent,
    NTLMState,
    ServerChallenge,
    has_flag,
    supplied_flags,
)


SMTP_CONTINUE = 334
SMTP_AUTH_SUCCESS = 235
SMTP_AUTH_ABORTED = 501

# Client line cancelling a pending AUTH exchange
AUTH_CANCEL = "*"

# Errors that end an attempt; anything else is a programming error and propagates
HANDSHAKE_ERRORS = (SMTPConnectionError, UnexpectedStatus, ProtocolError, CryptoError)


@runtime_checkable
class Transport(Protocol):
    """
    Line transport the handshake talks through.

    send() writes one command line; expect() reads one reply and returns
    its text, raising UnexpectedStatus for any other status code.
    ``authenticated`` is set by a successful handshake and cleared by the
    transport whenever its connection is opened or closed.
    """

    authenticated: bool

    def send(self, line: str) -> None:
        ...

    def expect(self, code: int) -> str:
        ...


# =============================================================================
# HANDSHAKE STATE MACHINE
# =============================================================================


def _on_negotiate_sent(event: NegotiateSent, ctx: HandshakeContext) -> HandshakeContext:
    return attrs.evolve(
        ctx,
        username=event.username,
        domain=event.domain,
        hostname=event.hostname,
        negotiate_flags=event.negotiate_flags,
    )


def _on_challenge(event: ChallengeReceived, ctx: HandshakeContext) -> HandshakeContext:
    return attrs.evolve(
        ctx,
        server_challenge=event.server_challenge,
        server_flags=event.negotiate_flags,
        target_name=event.target_name,
        status_code=SMTP_CONTINUE,
    )


def _on_authenticate_sent(event: AuthenticateSent, ctx: HandshakeContext) -> HandshakeContext:
    return attrs.evolve(ctx, server_flags=event.negotiate_flags)


def _on_accepted(event: AuthenticationAccepted, ctx: HandshakeContext) -> HandshakeContext:
    return attrs.evolve(ctx, status_code=event.status_code)


def _on_failed(event: HandshakeFailed, ctx: HandshakeContext) -> HandshakeContext:
    return attrs.evolve(
        ctx,
        status_code=event.status_code if event.status_code is not None else ctx.status_code,
        error_type=event.error_type,
        error_message=event.error_message,
    )


def _transition_table() -> TransitionTable:
    table = {
        (NTLMState.IDLE, NegotiateSent): (NTLMState.NEGOTIATE_SENT, _on_negotiate_sent),
        (NTLMState.NEGOTIATE_SENT, ChallengeReceived): (
            NTLMState.CHALLENGE_RECEIVED,
            _on_challenge,
        ),
        (NTLMState.CHALLENGE_RECEIVED, AuthenticateSent): (
            NTLMState.AUTHENTICATE_SENT,
            _on_authenticate_sent,
        ),
        (NTLMState.AUTHENTICATE_SENT, AuthenticationAccepted): (
            NTLMState.AUTHENTICATED,
            _on_accepted,
        ),
    }
    for state in NTLMState:
        if not state.is_terminal:
            table[(state, HandshakeFailed)] = (NTLMState.FAILED, _on_failed)
    return table


# NEGOTIATE -> CHALLENGE -> AUTHENTICATE in order; HandshakeFailed from any live state
HANDSHAKE_TRANSITIONS = _transition_table()


def challenge_before_authenticate(state: NTLMState, ctx: HandshakeContext) -> bool:
    """Invariant: a server challenge is stored before AUTHENTICATE goes out."""
    if state in (
        NTLMState.CHALLENGE_RECEIVED,
        NTLMState.AUTHENTICATE_SENT,
        NTLMState.AUTHENTICATED,
    ):
        return ctx.server_challenge is not None
    return True


def handshake_state_machine() -> StateMachine:
    """Fresh handshake state machine in IDLE with its invariants registered."""
    machine = StateMachine(
        table=HANDSHAKE_TRANSITIONS,
        state=NTLMState.IDLE,
        context=HandshakeContext(),
    )
    machine.add_invariant("challenge_before_authenticate", challenge_before_authenticate)
    return machine


# =============================================================================
# HANDSHAKE
# =============================================================================


@attrs.define
class NTLMHandshake:
    """
    One NTLMv1 authentication attempt over an SMTP transport.

    Example:
        transport = SMTPTransport("mail.example.com", 25)
        transport.connect()
        ...  # greeting and EHLO

        handshake = NTLMHandshake(
            credentials=Credentials(username="jdoe", password="secret", domain="CORP"),
            transport=transport,
        )
        result = handshake.run()
        if isinstance(result, Failure):
            raise result.failure()
    """

    credentials: Credentials
    transport: Transport

    _state_machine: StateMachine = attrs.Factory(handshake_state_machine)
    # Set between reading the 334 and sending the continuation line
    _continuation_pending: bool = False
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def state(self) -> NTLMState:
        """Current handshake state."""
        return self._state_machine.state

    @property
    def context(self) -> HandshakeContext:
        """Current context (read-only)."""
        return self._state_machine.context

    @property
    def is_authenticated(self) -> bool:
        return self.state == NTLMState.AUTHENTICATED

    def run(self) -> Result[NTLMState, SmtpNtlmError]:
        """
        Perform the complete exchange.

        Returns:
            Success(NTLMState.AUTHENTICATED) once the server answered 235,
            Failure(error) with SMTPConnectionError, UnexpectedStatus,
            ProtocolError or MalformedMessage otherwise

        Raises:
            AlreadyAuthenticated: If this handshake, or an earlier one on
                the same connection, already succeeded
            StateError: If this handshake already failed
        """
        if self.is_authenticated or self.transport.authenticated:
            raise AlreadyAuthenticated()
        if self.state != NTLMState.IDLE:
            raise StateError(
                f"Handshake already ended in state {self.state.name}; start a new one"
            )

        self._logger.info(
            "ntlm_handshake_start",
            username=self.credentials.username,
            domain=self.credentials.domain,
        )

        try:
            challenge = self._negotiate()
            self._authenticate(challenge)
        except HANDSHAKE_ERRORS as e:
            return self._fail(e)

        self.transport.authenticated = True
        self._logger.info(
            "ntlm_authenticated",
            username=self.credentials.username,
            domain=self.credentials.domain,
        )
        return Success(self.state)

    def _negotiate(self) -> ServerChallenge:
        """Send NEGOTIATE and parse the server's CHALLENGE."""
        creds = self.credentials
        flags = supplied_flags(
            NegotiateFlags.default_client_flags(), creds.domain, creds.hostname
        )

        message = encode_negotiate(creds.domain, creds.hostname, flags)
        self.transport.send(f"AUTH NTLM {to_base64(message)}")
        self._advance(
            NegotiateSent(
                username=creds.username,
                domain=creds.domain,
                hostname=creds.hostname,
                negotiate_flags=flags,
            )
        )
        self._logger.debug("ntlm_negotiate_sent", flags=hex(flags))

        reply = self.transport.expect(SMTP_CONTINUE)
        self._continuation_pending = True

        challenge = decode_challenge(from_base64(reply))
        self._advance(
            ChallengeReceived(
                server_challenge=challenge.nonce,
                negotiate_flags=challenge.negotiate_flags,
                target_name=challenge.target_name,
            )
        )

        self._logger.info(
            "ntlm_challenge_received",
            target_name=challenge.target_name,
            server_domain=self._server_domain(challenge),
            flags=hex(challenge.negotiate_flags),
        )
        return challenge

    def _authenticate(self, challenge: ServerChallenge) -> None:
        """Send the NTLMv1 AUTHENTICATE continuation line and expect 235."""
        creds = self.credentials
        flags = challenge.negotiate_flags

        # v1 responses only; the server's offer of NTLM2 session security is declined
        if has_flag(flags, NegotiateFlags.NEGOTIATE_EXTENDED_SESSIONSECURITY):
            self._logger.warning(
                "ntlm_extended_session_security_declined",
                flags=hex(flags),
            )
            flags &= ~NegotiateFlags.NEGOTIATE_EXTENDED_SESSIONSECURITY.value

        response = compute_ntlm_v1_response(creds.password, challenge.nonce)
        message = encode_authenticate(
            username=creds.username,
            domain=creds.domain,
            hostname=creds.hostname,
            lm_response=response.lm_response,
            nt_response=response.nt_response,
            flags=flags,
        )

        self._continuation_pending = False
        self.transport.send(to_base64(message))
        self._advance(AuthenticateSent(negotiate_flags=flags))
        self._logger.debug("ntlm_authenticate_sent", flags=hex(flags))

        self.transport.expect(SMTP_AUTH_SUCCESS)
        self._advance(AuthenticationAccepted(status_code=SMTP_AUTH_SUCCESS))

    def _advance(self, event: Any) -> None:
        result = self._state_machine.process_event(event)
        if isinstance(result, Failure):
            raise StateError(result.failure())

    def _fail(self, error: SmtpNtlmError) -> Failure:
        status_code = error.actual if isinstance(error, UnexpectedStatus) else None

        self._advance(
            HandshakeFailed(
                error_type=type(error).__name__,
                error_message=error.message,
                status_code=status_code,
            )
        )
        self._logger.warning(
            "ntlm_handshake_failed",
            username=self.credentials.username,
            error_type=type(error).__name__,
            error=error.message,
            status_code=status_code,
        )

        if self._continuation_pending and not isinstance(error, SMTPConnectionError):
            self._cancel()
        return Failure(error)

    def _cancel(self) -> None:
        """Answer a pending 334 with "*" and consume the server's 501."""
        self._continuation_pending = False
        try:
            self.transport.send(AUTH_CANCEL)
            self.transport.expect(SMTP_AUTH_ABORTED)
        except SmtpNtlmError as e:
            self._logger.warning("ntlm_cancel_failed", error=e.message)
            return
        self._logger.info("ntlm_exchange_cancelled")

    def _server_domain(self, challenge: ServerChallenge) -> str:
        try:
            return challenge.server_domain
        except MalformedMessage as e:
            self._logger.warning("av_pair_parse_error", error=e.message)
            return challenge.target_name

    def get_trace(self) -> List[Dict[str, Any]]:
        """Transition history of this attempt."""
        return [t.to_dict() for t in self._state_machine.history]

    def visited_states(self) -> List[str]:
        return self._state_machine.visited_states()

    def export_trace_json(self) -> str:
        return self._state_machine.export_trace_json()


def authenticate(
    credentials: Credentials,
    transport: Transport,
) -> Result[NTLMState, SmtpNtlmError]:
    """
    Authenticate ``transport`` with NTLMv1 in a fresh handshake.

    Args:
        credentials: Immutable credentials for this attempt
        transport: Connected SMTP transport, after EHLO

    Returns:
        Success(NTLMState.AUTHENTICATED) or Failure(error)

    Raises:
        AlreadyAuthenticated: If the transport is already authenticated
    """
    return NTLMHandshake(credentials=credentials, transport=transport).run()
