"""Trafficplane federation HTTP server.

Serves the node-to-node federation protocol and the administrative
federation API over HTTP with Bearer token authentication.

Usage:
    # Start the server
    trafficplane serve

    # Manage tokens
    trafficplane token create --client-id "ops-dashboard" --org acme --role ADMIN
    trafficplane token list
    trafficplane token revoke --client-id "ops-dashboard"
"""

from .auth import TokenStore, get_token_store, verify_token
from .config import ServerSettings, get_settings

__all__ = [
    "ServerSettings",
    "get_settings",
    "TokenStore",
    "verify_token",
    "get_token_store",
]
