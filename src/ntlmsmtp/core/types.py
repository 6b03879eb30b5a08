"""
ntlmsmtp Core Types

Value types shared by the NTLM handshake and the SMTP client.

Design Principles:
- Immutable: All types use frozen attrs for safety
- Validated: Type constraints enforced at construction
"""

from __future__ import annotations

import attrs
from attrs import field, validators


@attrs.define(frozen=True, slots=True)
class Credentials:
    """
    Windows-domain credentials used for one NTLM handshake.

    Domain and hostname may be empty; the server then infers them.
    The password never appears in repr() output.
    """

    username: str = field(validator=validators.instance_of(str))
    password: str = field(validator=validators.instance_of(str), repr=False)
    domain: str = field(default="", validator=validators.instance_of(str))
    hostname: str = field(default="", validator=validators.instance_of(str))

    @classmethod
    def from_string(cls, account: str, password: str, hostname: str = "") -> Credentials:
        """
        Build credentials from a down-level logon name.

        Examples:
            "CORP\\jdoe" -> Credentials(username="jdoe", domain="CORP")
            "jdoe"       -> Credentials(username="jdoe", domain="")
        """
        domain, sep, username = account.partition("\\")
        if not sep:
            domain, username = "", account

        return cls(username=username, password=password, domain=domain, hostname=hostname)

    def __str__(self) -> str:
        if self.domain:
            return f"{self.domain}\\{self.username}"
        return self.username
