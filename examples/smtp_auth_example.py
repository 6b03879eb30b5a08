#!/usr/bin/env python3
"""
SMTP AUTH NTLM Example

Demonstrates how to authenticate an SMTP session with ntlmsmtp.

Features:
1. Configuration from (host, port, options)
2. NTLMv1 handshake over AUTH NTLM
3. Error handling with the Result returned by the handshake
4. Handshake trace export

Usage:
    SMTP_HOST=mail.example.com SMTP_USER='CORP\\jdoe' SMTP_PASSWORD=secret \
        python examples/smtp_auth_example.py
"""

import os
import sys

from returns.result import Failure

from ntlmsmtp import (
    Credentials,
    NtlmSMTP,
    SmtpNtlmError,
    SMTPConfig,
    SMTPTransport,
    authenticate,
)


def main() -> int:
    """Authenticate against the server named in the environment."""

    print("=" * 70)
    print("ntlmsmtp - SMTP AUTH NTLM")
    print("=" * 70)
    print()

    host = os.environ.get("SMTP_HOST", "127.0.0.1")
    port = int(os.environ.get("SMTP_PORT", "25"))
    credentials = Credentials.from_string(
        os.environ.get("SMTP_USER", "jdoe"),
        os.environ.get("SMTP_PASSWORD", ""),
        hostname=os.environ.get("SMTP_WORKSTATION", ""),
    )

    # ==========================================================================
    # EXAMPLE 1: High-level client
    # ==========================================================================
    print("1. NtlmSMTP client")
    print("-" * 40)

    client = NtlmSMTP.from_options(
        host,
        port,
        {
            "domain": credentials.domain,
            "hostname": credentials.hostname,
            "username": credentials.username,
            "password": credentials.password,
        },
    )

    try:
        with client:
            try:
                client.auth()
            except SmtpNtlmError:
                # quit() discards the handshake, so export it first
                print(client.handshake.export_trace_json())
                raise
            print(f"   Authenticated as {credentials}")
            print(f"   Final state: {client.handshake.state.name}")
    except SmtpNtlmError as e:
        print(f"   Authentication failed: {e.message}")
        return 1
    print()

    # ==========================================================================
    # EXAMPLE 2: Handshake on an existing transport
    # ==========================================================================
    print("2. authenticate() on a transport")
    print("-" * 40)

    config = SMTPConfig.from_options(host, port)
    with SMTPTransport(host=config.host, port=config.port, timeout=config.timeout) as transport:
        transport.expect(220)
        transport.send("EHLO localhost")
        print(f"   Extensions: {transport.expect(250)!r}")

        result = authenticate(credentials, transport)
        if isinstance(result, Failure):
            print(f"   Authentication failed: {result.failure().message}")
            return 1

        print(f"   Result: {result.unwrap().name}")
        transport.send("QUIT")

    return 0


if __name__ == "__main__":
    sys.exit(main())
