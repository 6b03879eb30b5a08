"""
ntlmsmtp NTLM Types

NTLMv1 message types and protocol structures per MS-NLMP.

Message layouts:
- NEGOTIATE_MESSAGE (type 1): client -> server, 32-byte header
- CHALLENGE_MESSAGE (type 2): server -> client, 32 to 56-byte header
- AUTHENTICATE_MESSAGE (type 3): client -> server, 64-byte header

Variable-length fields are described by security buffers
(length, max length, offset) pointing into the message payload.

WARNING: NTLMv1 has known vulnerabilities. It is implemented for
compatibility with mail servers that require it.
"""

from __future__ import annotations

import struct
from enum import Enum, Flag, auto
from typing import List, Optional, Tuple

import attrs
from attrs import field, validators

from ntlmsmtp.core.exceptions import MalformedMessage


# =============================================================================
# HANDSHAKE STATE MACHINE
# =============================================================================


class NTLMState(Enum):
    """NTLM-over-SMTP handshake states."""

    IDLE = auto()
    NEGOTIATE_SENT = auto()
    CHALLENGE_RECEIVED = auto()
    AUTHENTICATE_SENT = auto()
    AUTHENTICATED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (NTLMState.AUTHENTICATED, NTLMState.FAILED)


@attrs.define
class HandshakeContext:
    """
    Per-attempt handshake context.

    Never holds the password or any value derived from it.
    """

    # Identity
    username: str = ""
    domain: str = ""
    hostname: str = ""

    # Flags sent in NEGOTIATE
    negotiate_flags: int = 0

    # Server challenge
    server_challenge: Optional[bytes] = None
    server_flags: int = 0
    target_name: str = ""

    # Last SMTP status seen and error state
    status_code: Optional[int] = None
    error_type: str = ""
    error_message: str = ""


# =============================================================================
# NTLM FLAGS
# =============================================================================


class NegotiateFlags(Flag):
    """
    NTLM negotiate flags per MS-NLMP 2.2.2.5.
    """

    NEGOTIATE_UNICODE = 0x00000001
    NEGOTIATE_OEM = 0x00000002
    REQUEST_TARGET = 0x00000004
    NEGOTIATE_SIGN = 0x00000010
    NEGOTIATE_SEAL = 0x00000020
    NEGOTIATE_DATAGRAM = 0x00000040
    NEGOTIATE_LM_KEY = 0x00000080
    NEGOTIATE_NTLM = 0x00000200
    NEGOTIATE_ANONYMOUS = 0x00000800
    NEGOTIATE_OEM_DOMAIN_SUPPLIED = 0x00001000
    NEGOTIATE_OEM_WORKSTATION_SUPPLIED = 0x00002000
    NEGOTIATE_ALWAYS_SIGN = 0x00008000
    TARGET_TYPE_DOMAIN = 0x00010000
    TARGET_TYPE_SERVER = 0x00020000
    NEGOTIATE_EXTENDED_SESSIONSECURITY = 0x00080000
    NEGOTIATE_IDENTIFY = 0x00100000
    REQUEST_NON_NT_SESSION_KEY = 0x00400000
    NEGOTIATE_TARGET_INFO = 0x00800000
    NEGOTIATE_VERSION = 0x02000000
    NEGOTIATE_128 = 0x20000000
    NEGOTIATE_KEY_EXCH = 0x40000000
    NEGOTIATE_56 = 0x80000000

    @classmethod
    def default_client_flags(cls) -> int:
        """Return the fixed NTLMv1 negotiate flags, without the *_SUPPLIED bits."""
        return (
            cls.NEGOTIATE_UNICODE.value
            | cls.NEGOTIATE_OEM.value
            | cls.REQUEST_TARGET.value
            | cls.NEGOTIATE_NTLM.value
            | cls.NEGOTIATE_ALWAYS_SIGN.value
        )

    @classmethod
    def default_server_flags(cls) -> int:
        """Return flags a server typically answers an NTLMv1 negotiate with."""
        return (
            cls.NEGOTIATE_UNICODE.value
            | cls.REQUEST_TARGET.value
            | cls.NEGOTIATE_NTLM.value
            | cls.NEGOTIATE_ALWAYS_SIGN.value
            | cls.TARGET_TYPE_DOMAIN.value
            | cls.NEGOTIATE_TARGET_INFO.value
        )


def supplied_flags(flags: int, domain: str, hostname: str) -> int:
    """
    Make the *_SUPPLIED bits agree with the presence of domain and hostname.

    A compliant server rejects a NEGOTIATE whose supplied bits announce
    fields that are absent, or omit fields that are present.
    """
    domain_bit = NegotiateFlags.NEGOTIATE_OEM_DOMAIN_SUPPLIED.value
    workstation_bit = NegotiateFlags.NEGOTIATE_OEM_WORKSTATION_SUPPLIED.value

    flags &= ~(domain_bit | workstation_bit)
    if domain:
        flags |= domain_bit
    if hostname:
        flags |= workstation_bit
    return flags


def has_flag(flags: int, flag: NegotiateFlags) -> bool:
    return bool(flags & flag.value)


# =============================================================================
# WIRE HELPERS
# =============================================================================


NTLM_SIGNATURE = b"NTLMSSP\x00"

# OEM code page used for non-Unicode strings
OEM_ENCODING = "cp437"

NEGOTIATE_HEADER_SIZE = 32
CHALLENGE_MIN_SIZE = 32
CHALLENGE_TARGET_INFO_SIZE = 48
CHALLENGE_VERSION_SIZE = 56
AUTHENTICATE_HEADER_SIZE = 64


def encode_oem(value: str) -> bytes:
    return value.encode(OEM_ENCODING, errors="replace")


def encode_string(value: str, unicode: bool) -> bytes:
    """Encode a name field as UTF-16LE or in the OEM code page."""
    if unicode:
        return value.encode("utf-16-le")
    return encode_oem(value)


def decode_string(data: bytes, unicode: bool) -> str:
    try:
        if unicode:
            return data.decode("utf-16-le")
        return data.decode(OEM_ENCODING)
    except UnicodeDecodeError as e:
        raise MalformedMessage(f"Undecodable string field: {e}") from e


def pack_security_buffer(length: int, offset: int) -> bytes:
    """Serialize a security buffer: length, max length, offset."""
    return struct.pack("<HHI", length, length, offset)


def read_security_buffer(data: bytes, position: int, name: str) -> bytes:
    """
    Read the field described by the security buffer at ``position``.

    Raises:
        MalformedMessage: If the buffer header or the field lies outside data
    """
    if len(data) < position + 8:
        raise MalformedMessage(f"{name} security buffer truncated")

    length, _max_length, offset = struct.unpack_from("<HHI", data, position)
    if length == 0:
        return b""
    if offset + length > len(data):
        raise MalformedMessage(
            f"{name} field out of bounds: offset {offset}, length {length}, "
            f"message size {len(data)}"
        )
    return data[offset : offset + length]


def check_header(data: bytes, expected_type: int, min_size: int) -> None:
    """
    Validate signature, message type and minimum size.

    Raises:
        MalformedMessage: On any mismatch
    """
    if len(data) < min_size:
        raise MalformedMessage(
            f"NTLM type {expected_type} message too short: {len(data)} < {min_size} bytes"
        )

    if data[:8] != NTLM_SIGNATURE:
        raise MalformedMessage("Invalid NTLM signature")

    msg_type = int.from_bytes(data[8:12], "little")
    if msg_type != expected_type:
        raise MalformedMessage(f"Expected type {expected_type}, got {msg_type}")


# =============================================================================
# AV PAIR STRUCTURES
# =============================================================================


class AVPairType(Enum):
    """
    AV_PAIR types per MS-NLMP 2.2.2.1.
    """

    MsvAvEOL = 0x0000
    MsvAvNbComputerName = 0x0001
    MsvAvNbDomainName = 0x0002
    MsvAvDnsComputerName = 0x0003
    MsvAvDnsDomainName = 0x0004
    MsvAvDnsTreeName = 0x0005
    MsvAvFlags = 0x0006
    MsvAvTimestamp = 0x0007
    MsvAvSingleHost = 0x0008
    MsvAvTargetName = 0x0009
    MsvAvChannelBindings = 0x000A


@attrs.define(frozen=True, slots=True)
class AVPair:
    """
    AV_PAIR structure per MS-NLMP 2.2.2.1.

    ``av_id`` stays a plain integer so unknown ids from newer servers
    do not break parsing.
    """

    av_id: int
    av_value: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> Tuple[AVPair, int]:
        """Parse one AV_PAIR, returning it and the number of bytes consumed."""
        if len(data) < 4:
            raise MalformedMessage("AV_PAIR too short")

        av_id, av_len = struct.unpack_from("<HH", data, 0)

        if len(data) < 4 + av_len:
            raise MalformedMessage(f"AV_PAIR value truncated: need {av_len}, have {len(data) - 4}")

        return cls(av_id=av_id, av_value=data[4 : 4 + av_len]), 4 + av_len

    def to_bytes(self) -> bytes:
        return struct.pack("<HH", self.av_id, len(self.av_value)) + self.av_value

    @property
    def text(self) -> str:
        """Value decoded as UTF-16LE (name-type pairs)."""
        return self.av_value.decode("utf-16-le", errors="replace")


def parse_av_pairs(data: bytes) -> List[AVPair]:
    """Parse list of AV_PAIRs from target_info."""
    pairs = []
    offset = 0

    while offset < len(data):
        pair, consumed = AVPair.from_bytes(data[offset:])
        offset += consumed

        if pair.av_id == AVPairType.MsvAvEOL.value:
            break
        pairs.append(pair)

    return pairs


def build_av_pairs(pairs: List[AVPair]) -> bytes:
    """Serialize list of AV_PAIRs to bytes, terminated by MsvAvEOL."""
    result = b"".join(pair.to_bytes() for pair in pairs)
    return result + AVPair(AVPairType.MsvAvEOL.value, b"").to_bytes()


def find_av_pair(pairs: List[AVPair], av_type: AVPairType) -> Optional[AVPair]:
    for pair in pairs:
        if pair.av_id == av_type.value:
            return pair
    return None


# =============================================================================
# NTLM MESSAGES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class NegotiateMessage:
    """
    NTLM NEGOTIATE_MESSAGE (Type 1).

    Client -> Server: Initiates NTLM authentication.
    Domain and workstation travel in the OEM code page, upper-cased.
    """

    message_type: int = 1

    negotiate_flags: int = field(factory=NegotiateFlags.default_client_flags)

    # Optional domain (OEM_DOMAIN_SUPPLIED)
    domain_name: str = ""

    # Optional workstation (OEM_WORKSTATION_SUPPLIED)
    workstation_name: str = ""

    @classmethod
    def create(
        cls,
        domain: str = "",
        hostname: str = "",
        flags: Optional[int] = None,
    ) -> NegotiateMessage:
        """Build a NEGOTIATE whose supplied flags agree with its fields."""
        if flags is None:
            flags = NegotiateFlags.default_client_flags()

        return cls(
            negotiate_flags=supplied_flags(flags, domain, hostname),
            domain_name=domain.upper(),
            workstation_name=hostname.upper(),
        )

    def to_bytes(self) -> bytes:
        """Serialize to wire format."""
        domain_bytes = encode_oem(self.domain_name)
        workstation_bytes = encode_oem(self.workstation_name)

        domain_offset = NEGOTIATE_HEADER_SIZE
        workstation_offset = domain_offset + len(domain_bytes)

        header = (
            NTLM_SIGNATURE
            + struct.pack("<II", self.message_type, self.negotiate_flags)
            + pack_security_buffer(len(domain_bytes), domain_offset)
            + pack_security_buffer(len(workstation_bytes), workstation_offset)
        )

        return header + domain_bytes + workstation_bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> NegotiateMessage:
        """Parse from wire format."""
        check_header(data, 1, NEGOTIATE_HEADER_SIZE)

        flags = int.from_bytes(data[12:16], "little")
        domain = read_security_buffer(data, 16, "DomainName")
        workstation = read_security_buffer(data, 24, "Workstation")

        return cls(
            negotiate_flags=flags,
            domain_name=decode_string(domain, unicode=False),
            workstation_name=decode_string(workstation, unicode=False),
        )


@attrs.define(frozen=True, slots=True)
class ServerChallenge:
    """
    NTLM CHALLENGE_MESSAGE (Type 2).

    Server -> Client: carries the 8-byte nonce, the flags the server
    agreed to and optionally its target name and target info block.
    Only the nonce is needed to compute NTLMv1 responses.
    """

    nonce: bytes = field(
        validator=validators.and_(
            validators.instance_of(bytes),
            validators.min_len(8),
            validators.max_len(8),
        )
    )
    negotiate_flags: int = 0
    target_name: str = ""
    target_info: bytes = b""
    # Present on the wire only when NEGOTIATE_VERSION is set
    version: Optional[bytes] = field(
        default=None,
        validator=validators.optional(
            validators.and_(validators.min_len(8), validators.max_len(8))
        ),
    )

    message_type: int = 2

    @property
    def unicode(self) -> bool:
        return has_flag(self.negotiate_flags, NegotiateFlags.NEGOTIATE_UNICODE)

    @property
    def av_pairs(self) -> List[AVPair]:
        """
        AV pairs of the target info block.

        Raises:
            MalformedMessage: If the block is truncated
        """
        return parse_av_pairs(self.target_info)

    @property
    def server_domain(self) -> str:
        """DNS or NetBIOS domain from target info, else the target name."""
        pairs = self.av_pairs
        pair = find_av_pair(pairs, AVPairType.MsvAvDnsDomainName) or find_av_pair(
            pairs, AVPairType.MsvAvNbDomainName
        )
        return pair.text if pair else self.target_name

    def to_bytes(self) -> bytes:
        """Serialize to wire format."""
        header_size = CHALLENGE_TARGET_INFO_SIZE + (8 if self.version else 0)

        target_name_bytes = encode_string(self.target_name, self.unicode)
        target_info_offset = header_size + len(target_name_bytes)

        msg = NTLM_SIGNATURE
        msg += struct.pack("<I", self.message_type)
        msg += pack_security_buffer(len(target_name_bytes), header_size)
        msg += struct.pack("<I", self.negotiate_flags)
        msg += self.nonce
        msg += b"\x00" * 8  # Reserved
        msg += pack_security_buffer(len(self.target_info), target_info_offset)
        if self.version:
            msg += self.version

        return msg + target_name_bytes + self.target_info

    @classmethod
    def from_bytes(cls, data: bytes) -> ServerChallenge:
        """
        Parse from wire format.

        Raises:
            MalformedMessage: If the buffer is shorter than the fixed header,
                the signature is wrong, the type is not 2, or a field lies
                outside the buffer
        """
        check_header(data, 2, CHALLENGE_MIN_SIZE)

        flags = int.from_bytes(data[20:24], "little")
        unicode = has_flag(flags, NegotiateFlags.NEGOTIATE_UNICODE)

        target_name = decode_string(read_security_buffer(data, 12, "TargetName"), unicode)

        target_info = b""
        if (
            len(data) >= CHALLENGE_TARGET_INFO_SIZE
            and has_flag(flags, NegotiateFlags.NEGOTIATE_TARGET_INFO)
        ):
            target_info = read_security_buffer(data, 40, "TargetInfo")

        version = None
        if (
            len(data) >= CHALLENGE_VERSION_SIZE
            and has_flag(flags, NegotiateFlags.NEGOTIATE_VERSION)
        ):
            version = data[48:56]

        return cls(
            nonce=data[24:32],
            negotiate_flags=flags,
            target_name=target_name,
            target_info=target_info,
            version=version,
        )


@attrs.define(frozen=True, slots=True)
class AuthenticateMessage:
    """
    NTLM AUTHENTICATE_MESSAGE (Type 3), NTLMv1 layout.

    Client -> Server: carries the LM and NT challenge responses plus the
    domain, user and workstation names. Names are UTF-16LE when
    NEGOTIATE_UNICODE is set in ``negotiate_flags``, OEM otherwise.
    """

    message_type: int = 3

    lm_response: bytes = b""
    nt_response: bytes = b""

    domain_name: str = ""
    user_name: str = ""
    workstation_name: str = ""

    # Always empty: NTLMv1 here never exchanges a session key
    encrypted_session_key: bytes = b""

    negotiate_flags: int = 0

    @property
    def unicode(self) -> bool:
        return has_flag(self.negotiate_flags, NegotiateFlags.NEGOTIATE_UNICODE)

    def to_bytes(self) -> bytes:
        """Serialize to wire format."""
        fields = [
            self.lm_response,
            self.nt_response,
            encode_string(self.domain_name, self.unicode),
            encode_string(self.user_name, self.unicode),
            encode_string(self.workstation_name, self.unicode),
            self.encrypted_session_key,
        ]

        msg = NTLM_SIGNATURE + struct.pack("<I", self.message_type)
        offset = AUTHENTICATE_HEADER_SIZE
        for value in fields:
            msg += pack_security_buffer(len(value), offset)
            offset += len(value)
        msg += struct.pack("<I", self.negotiate_flags)

        return msg + b"".join(fields)

    @classmethod
    def from_bytes(cls, data: bytes) -> AuthenticateMessage:
        """Parse from wire format."""
        check_header(data, 3, AUTHENTICATE_HEADER_SIZE)

        flags = int.from_bytes(data[60:64], "little")
        unicode = has_flag(flags, NegotiateFlags.NEGOTIATE_UNICODE)

        return cls(
            lm_response=read_security_buffer(data, 12, "LmChallengeResponse"),
            nt_response=read_security_buffer(data, 20, "NtChallengeResponse"),
            domain_name=decode_string(read_security_buffer(data, 28, "DomainName"), unicode),
            user_name=decode_string(read_security_buffer(data, 36, "UserName"), unicode),
            workstation_name=decode_string(read_security_buffer(data, 44, "Workstation"), unicode),
            encrypted_session_key=read_security_buffer(data, 52, "EncryptedRandomSessionKey"),
            negotiate_flags=flags,
        )


# =============================================================================
# RESPONSES
# =============================================================================


def _exactly_24_bytes(instance: object, attribute: attrs.Attribute, value: bytes) -> None:
    if len(value) != 24:
        raise ValueError(f"{attribute.name} must be 24 bytes, got {len(value)}")


@attrs.define(frozen=True, slots=True)
class NtlmResponse:
    """LM and NT challenge responses for one AUTHENTICATE message."""

    lm_response: bytes = field(
        validator=[validators.instance_of(bytes), _exactly_24_bytes], repr=False
    )
    nt_response: bytes = field(
        validator=[validators.instance_of(bytes), _exactly_24_bytes], repr=False
    )


# =============================================================================
# HANDSHAKE EVENTS (for state machine)
# =============================================================================


@attrs.define(frozen=True, slots=True)
class NegotiateSent:
    """Event: `AUTH NTLM <negotiate>` was sent."""

    username: str
    domain: str
    hostname: str
    negotiate_flags: int


@attrs.define(frozen=True, slots=True)
class ChallengeReceived:
    """Event: 334 with a valid CHALLENGE_MESSAGE was received."""

    server_challenge: bytes
    negotiate_flags: int
    target_name: str


@attrs.define(frozen=True, slots=True)
class AuthenticateSent:
    """Event: the AUTHENTICATE continuation line was sent."""

    negotiate_flags: int


@attrs.define(frozen=True, slots=True)
class AuthenticationAccepted:
    """Event: the server answered 235."""

    status_code: int


@attrs.define(frozen=True, slots=True)
class HandshakeFailed:
    """Event: the attempt failed at the current step."""

    error_type: str
    error_message: str
    status_code: Optional[int] = None
