"""
ntlmsmtp SMTP Module

Components:
- transport: Blocking line transport and reply parsing
- client: SMTP session with configuration and AUTH NTLM
"""

from ntlmsmtp.smtp.transport import SMTPTransport, parse_reply, parse_reply_line
from ntlmsmtp.smtp.client import NtlmSMTP, SMTPConfig, merge_options

__all__ = [
    "SMTPTransport",
    "parse_reply",
    "parse_reply_line",
    "NtlmSMTP",
    "SMTPConfig",
    "merge_options",
]
