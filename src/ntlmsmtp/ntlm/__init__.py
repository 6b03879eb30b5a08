"""
ntlmsmtp NTLM Module

Implementation of NTLMv1 authentication (MS-NLMP) as used by SMTP AUTH NTLM.

Components:
- types: NTLM message types, flags and handshake events
- codec: Encode/decode of NEGOTIATE, CHALLENGE and AUTHENTICATE messages
- responses: LM/NT hashes and the DES challenge response
- handshake: SMTP exchange driven by a state machine

WARNING: NTLMv1 has inherent security weaknesses:
- Responses can be cracked offline from a captured exchange
- Relay attacks (no channel binding)
- No mutual authentication

Extended session security is never negotiated; a server offering it is
answered with plain NTLMv1 responses.
"""

from ntlmsmtp.ntlm.types import (
    NTLMState,
    HandshakeContext,
    NegotiateFlags,
    NegotiateMessage,
    ServerChallenge,
    AuthenticateMessage,
    NtlmResponse,
    AVPair,
    AVPairType,
)
from ntlmsmtp.ntlm.codec import (
    encode_negotiate,
    decode_negotiate,
    encode_challenge,
    decode_challenge,
    encode_authenticate,
    decode_authenticate,
    to_base64,
    from_base64,
)
from ntlmsmtp.ntlm.responses import (
    lm_hash,
    nt_hash,
    challenge_response,
    compute_ntlm_v1_response,
)
from ntlmsmtp.ntlm.handshake import (
    NTLMHandshake,
    handshake_state_machine,
    Transport,
    authenticate,
)

__all__ = [
    # State machine
    "NTLMState",
    "HandshakeContext",
    "handshake_state_machine",
    # Flags
    "NegotiateFlags",
    # Messages
    "NegotiateMessage",
    "ServerChallenge",
    "AuthenticateMessage",
    "NtlmResponse",
    # AV Pairs
    "AVPair",
    "AVPairType",
    # Codec
    "encode_negotiate",
    "decode_negotiate",
    "encode_challenge",
    "decode_challenge",
    "encode_authenticate",
    "decode_authenticate",
    "to_base64",
    "from_base64",
    # Responses
    "lm_hash",
    "nt_hash",
    "challenge_response",
    "compute_ntlm_v1_response",
    # Handshake
    "NTLMHandshake",
    "Transport",
    "authenticate",
]
