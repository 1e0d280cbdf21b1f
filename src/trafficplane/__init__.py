# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Trafficplane federation core.

Independently deployed Trafficplane nodes can federate: one node, the
Principle, coordinates a set of subordinate Partner nodes. This package
carries the handshake that establishes the relationship, the shared-secret
trust token, heartbeat liveness and disconnection, plus the HTTP server and
CLI that expose them.

Layout:
  core/        configuration, logging, exceptions, database pool
  federation/  the federation protocol itself
  server/      Starlette app, token auth and the ``trafficplane`` CLI
"""

__version__ = "0.1.0"
