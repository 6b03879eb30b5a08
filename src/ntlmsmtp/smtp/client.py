"""
ntlmsmtp SMTP Client

SMTP client that authenticates with NTLMv1.

Configuration follows the usual mail-protocol convention of a host,
an optional port and an optional options mapping, where the host
argument may itself be a mapping of options.

Example:
    client = NtlmSMTP.from_options(
        "mail.example.com",
        587,
        {"domain": "CORP", "username": "jdoe", "password": "secret"},
    )
    with client:
        client.auth()
"""

from __future__ import annotations

import socket
from typing import Any, Dict, Mapping, Optional, Union

import attrs
import structlog
from returns.result import Failure

from ntlmsmtp.core.exceptions import AlreadyAuthenticated, SmtpNtlmError, StateError
from ntlmsmtp.core.types import Credentials
from ntlmsmtp.ntlm.handshake import NTLMHandshake
from ntlmsmtp.smtp.transport import SMTPTransport

SMTP_READY = 220
SMTP_OK = 250
SMTP_CLOSING = 221


def merge_options(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge two option mappings; values from ``override`` win.
    """
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_options(merged[key], value)
        else:
            merged[key] = value
    return merged


# =============================================================================
# CONFIGURATION
# =============================================================================


@attrs.define
class SMTPConfig:
    """
    SMTP connection and NTLM credential configuration.

    Attributes:
        host: SMTP server hostname
        port: SMTP server port (default 25)
        timeout: Socket timeout in seconds, None blocks forever
        local_hostname: Name announced in EHLO (default: this machine's FQDN)
        domain: NT domain, may be empty
        hostname: Workstation name sent in NTLM messages, may be empty
        username: NT user name
        password: NT password
    """

    host: str = "127.0.0.1"
    port: int = 25
    timeout: Optional[float] = 30.0
    local_hostname: str = ""
    domain: str = ""
    hostname: str = ""
    username: str = ""
    password: str = attrs.field(default="", repr=False)

    @classmethod
    def from_options(
        cls,
        host: Union[str, Mapping[str, Any]] = "127.0.0.1",
        port: Optional[int] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> SMTPConfig:
        """
        Build a config from (host, port, options).

        When ``host`` is a mapping it is treated as options and merged with
        ``config``, entries of ``config`` taking precedence. Unknown keys
        are ignored.
        """
        options: Dict[str, Any] = {}
        if isinstance(host, Mapping):
            options = merge_options(host, config or {})
        elif config:
            options = dict(config)

        if not isinstance(host, Mapping):
            options.setdefault("host", host)
        if port is not None:
            options["port"] = port

        known = {a.name for a in attrs.fields(cls)}
        values = {key: value for key, value in options.items() if key in known}
        if "port" in values:
            values["port"] = int(values["port"])

        return cls(**values)

    def credentials(self) -> Credentials:
        """Immutable credentials for one handshake."""
        return Credentials(
            username=self.username,
            password=self.password,
            domain=self.domain,
            hostname=self.hostname,
        )


# =============================================================================
# CLIENT
# =============================================================================


@attrs.define
class NtlmSMTP:
    """
    SMTP session authenticating with AUTH NTLM (NTLMv1).

    Holds its transport rather than extending an SMTP protocol class.
    One successful auth() per connection.
    """

    config: SMTPConfig = attrs.Factory(SMTPConfig)
    transport: Optional[SMTPTransport] = None

    _handshake: Optional[NTLMHandshake] = attrs.field(default=None, repr=False)
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @classmethod
    def from_options(
        cls,
        host: Union[str, Mapping[str, Any]] = "127.0.0.1",
        port: Optional[int] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> NtlmSMTP:
        return cls(config=SMTPConfig.from_options(host, port, config))

    @property
    def is_authenticated(self) -> bool:
        return (
            self.transport is not None
            and self.transport.connected
            and self.transport.authenticated
        )

    @property
    def handshake(self) -> Optional[NTLMHandshake]:
        """The last handshake attempted on this connection."""
        return self._handshake

    def connect(self) -> None:
        """Open the connection, read the greeting and send EHLO."""
        if self.transport is None:
            self.transport = SMTPTransport(
                host=self.config.host,
                port=self.config.port,
                timeout=self.config.timeout,
            )
        self._handshake = None
        self.transport.connect()

        greeting = self.transport.expect(SMTP_READY)
        self._logger.info(
            "smtp_session_opened",
            host=self.config.host,
            port=self.config.port,
            greeting=greeting,
        )
        self.ehlo()

    def ehlo(self) -> str:
        """Send EHLO and return the server's extension list."""
        name = self.config.local_hostname or socket.getfqdn()
        self._require_transport().send(f"EHLO {name}")
        return self._require_transport().expect(SMTP_OK)

    def auth(self) -> None:
        """
        Authenticate with NTLMv1.

        Raises:
            AlreadyAuthenticated: If this connection already authenticated
            SmtpNtlmError: The handshake error (UnexpectedStatus,
                SMTPConnectionError, ProtocolError, MalformedMessage)
        """
        if self.is_authenticated:
            raise AlreadyAuthenticated()

        self._handshake = NTLMHandshake(
            credentials=self.config.credentials(),
            transport=self._require_transport(),
        )
        result = self._handshake.run()
        if isinstance(result, Failure):
            raise result.failure()

    def quit(self) -> None:
        """Send QUIT and close the connection."""
        if self.transport is None:
            return
        try:
            if self.transport.connected:
                self.transport.send("QUIT")
                self.transport.expect(SMTP_CLOSING)
        except SmtpNtlmError as e:
            self._logger.warning("smtp_quit_failed", error=e.message)
        finally:
            self.transport.close()
            self._handshake = None

    def _require_transport(self) -> SMTPTransport:
        if self.transport is None or not self.transport.connected:
            raise StateError("Not connected; call connect() first")
        return self.transport

    def __enter__(self) -> NtlmSMTP:
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.quit()
