"""
ntlmsmtp SMTP Transport

Line-oriented SMTP connection used by the NTLM handshake.

The handshake only needs two operations:
- send(line): write one command line
- expect(code): read one reply and return its text, failing on any
  other status code

Protocol:
- Lines are terminated by CRLF
- Replies are "NNN text" or multi-line "NNN-text" ... "NNN text"
"""

from __future__ import annotations

import socket
from typing import Any, List, Optional, Tuple

import attrs
import structlog

from ntlmsmtp.core.exceptions import ProtocolError, SMTPConnectionError, UnexpectedStatus

CRLF = b"\r\n"
MAX_LINE_LENGTH = 8192

# Commands whose verb may be logged; anything else is a continuation line
LOGGED_VERBS = ("EHLO", "HELO", "AUTH", "QUIT", "NOOP", "RSET")


def _command_verb(line: str) -> str:
    verb = line.split(" ", 1)[0].upper()
    return verb if verb in LOGGED_VERBS else "<continuation>"


# =============================================================================
# REPLY PARSING
# =============================================================================


def parse_reply_line(line: str) -> Tuple[int, bool, str]:
    """
    Split one reply line into (code, is_last, text).

    Raises:
        ProtocolError: If the line does not start with a 3-digit code
    """
    code_text = line[:3]
    if len(code_text) != 3 or not code_text.isdigit():
        raise ProtocolError(f"Malformed SMTP reply line: {line!r}")

    separator = line[3:4]
    if separator not in ("", " ", "-"):
        raise ProtocolError(f"Malformed SMTP reply line: {line!r}")

    return int(code_text), separator != "-", line[4:]


def parse_reply(lines: List[str]) -> Tuple[int, str]:
    """
    Combine the lines of one (possibly multi-line) reply.

    Returns:
        Tuple of (code, text) with the text lines joined by newlines
    """
    if not lines:
        raise ProtocolError("Empty SMTP reply")

    code = None
    texts = []
    for line in lines:
        line_code, _last, text = parse_reply_line(line)
        if code is not None and line_code != code:
            raise ProtocolError(f"Inconsistent codes in multi-line reply: {code} and {line_code}")
        code = line_code
        texts.append(text)

    return code, "\n".join(texts)


# =============================================================================
# SOCKET TRANSPORT
# =============================================================================


@attrs.define
class SMTPTransport:
    """
    Blocking SMTP line transport over a TCP socket.

    Timeouts apply to connect, send and every read; the NTLM handshake
    itself imposes none.
    """

    host: str = "127.0.0.1"
    port: int = 25
    timeout: Optional[float] = 30.0

    # Set by a successful NTLM handshake; cleared whenever the socket changes
    authenticated: bool = attrs.field(default=False, init=False)

    _socket: Optional[socket.socket] = None
    _reader: Optional[Any] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @classmethod
    def from_socket(cls, sock: socket.socket) -> SMTPTransport:
        """Wrap an already connected socket."""
        transport = cls()
        transport._attach(sock)
        return transport

    @property
    def connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> None:
        """Open the TCP connection."""
        if self._socket:
            return

        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            self._logger.error(
                "smtp_connect_failed",
                host=self.host,
                port=self.port,
                error=str(e),
            )
            raise SMTPConnectionError(
                f"Failed to connect to SMTP server {self.host}:{self.port}: {e}"
            ) from e

        self._attach(sock)
        self._logger.debug("smtp_connected", host=self.host, port=self.port)

    def _attach(self, sock: socket.socket) -> None:
        self._socket = sock
        self._reader = sock.makefile("rb")
        self.authenticated = False

    def close(self) -> None:
        """Close the connection."""
        self.authenticated = False
        if self._reader:
            self._reader.close()
            self._reader = None
        if self._socket:
            self._socket.close()
            self._socket = None
            self._logger.debug("smtp_connection_closed", host=self.host)

    def send(self, line: str) -> None:
        """Write one command line followed by CRLF."""
        if self._socket is None:
            raise SMTPConnectionError("Not connected")

        try:
            self._socket.sendall(line.encode("utf-8") + CRLF)
        except OSError as e:
            self._logger.error("smtp_send_failed", error=str(e))
            raise SMTPConnectionError(f"Failed to send to SMTP server: {e}") from e

        self._logger.debug("smtp_sent", command=_command_verb(line))

    def _read_line(self) -> str:
        if self._reader is None:
            raise SMTPConnectionError("Not connected")

        try:
            raw = self._reader.readline(MAX_LINE_LENGTH + 1)
        except OSError as e:
            self._logger.error("smtp_read_failed", error=str(e))
            raise SMTPConnectionError(f"Failed to read from SMTP server: {e}") from e

        if not raw:
            raise SMTPConnectionError("Connection closed by SMTP server")
        if len(raw) > MAX_LINE_LENGTH:
            raise ProtocolError("SMTP reply line too long")

        return raw.rstrip(b"\r\n").decode("utf-8", errors="replace")

    def read_reply(self) -> Tuple[int, str]:
        """Read one complete reply and return (code, text)."""
        lines = []
        while True:
            line = self._read_line()
            lines.append(line)
            _code, last, _text = parse_reply_line(line)
            if last:
                break

        code, text = parse_reply(lines)
        self._logger.debug("smtp_reply", code=code)
        return code, text

    def expect(self, code: int) -> str:
        """Read one reply and return its text if it carries ``code``."""
        actual, text = self.read_reply()
        if actual != code:
            self._logger.warning(
                "smtp_unexpected_status",
                expected=code,
                actual=actual,
                text=text,
            )
            raise UnexpectedStatus(expected=code, actual=actual, text=text)
        return text

    def __enter__(self) -> SMTPTransport:
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
