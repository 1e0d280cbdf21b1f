# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Shared-secret trust tokens.

The secret proposed by a requester is the only correlation key between the
two sides of a handshake, and later the bearer credential for heartbeats.
It must be unguessable and must never be compared with ``==``.
"""

from __future__ import annotations

import hmac
import secrets

# 32 bytes = 256 bits of entropy, hex encoded (64 chars)
SECRET_KEY_BYTES = 32


def generate_secret_key() -> str:
    """Generate a new trust secret from the OS CSPRNG."""
    return secrets.token_hex(SECRET_KEY_BYTES)


def secrets_match(expected: str | None, supplied: str | None) -> bool:
    """Constant-time secret comparison. Missing values never match."""
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))
