# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Trafficplane Contributors

"""Command-line interface for the Trafficplane federation server.

Commands:
    trafficplane serve                      Run the HTTP server
    trafficplane token create|list|revoke   Manage administrative API tokens
    trafficplane init-db                    Create the federation tables (postgres store)
    trafficplane heartbeat --org ORG        Send one round of heartbeats
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import secrets
import stat
import sys
import time
from datetime import datetime
from pathlib import Path

from .auth import MembershipRole, TokenStore, hash_token

logger = logging.getLogger(__name__)


def get_secure_token_dir() -> Path:
    """Get or create the secure token directory.

    Creates ~/.trafficplane/tokens/ with 0700 permissions.
    """
    token_dir = Path.home() / ".trafficplane" / "tokens"
    token_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(token_dir, stat.S_IRWXU)
    return token_dir


def save_token_securely(client_id: str, raw_token: str) -> Path:
    """Save a token to a 0600 file and return its path."""
    token_dir = get_secure_token_dir()

    # Sanitize client_id for use as filename
    safe_client_id = "".join(c if c.isalnum() or c in "-_" else "_" for c in client_id)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{safe_client_id}_{timestamp}_{secrets.token_hex(4)}.token"
    token_file = token_dir / filename

    # Create file with restricted permissions from the start
    fd = os.open(
        token_file,
        os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
        stat.S_IRUSR | stat.S_IWUSR,  # 0600
    )
    try:
        os.write(fd, raw_token.encode("utf-8"))
        os.write(fd, b"\n")
    finally:
        os.close(fd)

    return token_file


def _token_file(args: argparse.Namespace) -> Path:
    if args.token_file is not None:
        return args.token_file
    from .config import get_settings

    return get_settings().token_file


# =============================================================================
# TOKEN COMMANDS
# =============================================================================


def cmd_token_create(args: argparse.Namespace) -> int:
    """Create a new token."""
    store = TokenStore(_token_file(args))

    expires_at = None
    if args.expires_days:
        expires_at = time.time() + (args.expires_days * 24 * 60 * 60)

    raw_token = store.create(
        client_id=args.client_id,
        org_id=args.org,
        role=args.role,
        description=args.description,
        expires_at=expires_at,
    )

    # Saved to a file rather than printed, to keep it out of shell history and logs
    token_file = save_token_securely(args.client_id, raw_token)

    print(f"{args.role} token created for client '{args.client_id}' in org '{args.org}'")
    print(f"Token file: {token_file}")
    print("Permissions: 0600 (owner read/write only)")
    print()
    print("Use it as:")
    print(f'  curl -H "Authorization: Bearer $(cat {token_file})" https://your-node/api/federation')
    print()
    print("IMPORTANT: Delete the token file after copying to a secure location.")
    return 0


def cmd_token_list(args: argparse.Namespace) -> int:
    """List all tokens."""
    tokens = TokenStore(_token_file(args)).list_tokens()

    if not tokens:
        print("No tokens found.")
        return 0

    print(f"{'Client ID':<20} {'Org':<16} {'Role':<8} {'Created':<18} {'Expires':<20}")
    print("-" * 84)

    for token in tokens:
        created = datetime.fromtimestamp(token.created_at).strftime("%Y-%m-%d %H:%M")
        if token.expires_at:
            expires = datetime.fromtimestamp(token.expires_at).strftime("%Y-%m-%d %H:%M")
            if token.is_expired():
                expires += " (EXPIRED)"
        else:
            expires = "Never"
        print(f"{token.client_id:<20} {token.org_id:<16} {token.role.value:<8} {created:<18} {expires:<20}")

    print()
    print(f"Total: {len(tokens)} token(s)")
    return 0


def cmd_token_revoke(args: argparse.Namespace) -> int:
    """Revoke a token."""
    store = TokenStore(_token_file(args))

    if args.client_id:
        tokens = store.get_by_client_id(args.client_id)
        if not tokens:
            print(f"No tokens found for client '{args.client_id}'")
            return 1
        for token in tokens:
            store.revoke(token.token_hash)
            print(f"Revoked token for client '{token.client_id}'")
        return 0

    token_hash = args.hash or (hash_token(args.token) if args.token else None)
    if token_hash is None:
        print("Must provide --client-id, --hash, or --token")
        return 1

    if store.revoke(token_hash):
        print("Token revoked.")
        return 0
    print("Token not found.")
    return 1


# =============================================================================
# SERVER / FEDERATION COMMANDS
# =============================================================================


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP server."""
    from .app import run

    run()
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the federation tables."""
    from ..core.exceptions import DatabaseException
    from ..federation.store import PostgresFederationStore

    try:
        PostgresFederationStore().create_schema()
    except DatabaseException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    print("Federation schema ready.")
    return 0


def cmd_heartbeat(args: argparse.Namespace) -> int:
    """Send one round of heartbeats for an organization."""
    from ..core.exceptions import ConfigException
    from ..federation.service import get_federation_service

    try:
        service = get_federation_service()
    except ConfigException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    outcomes = asyncio.run(service.heartbeat.send_heartbeats(args.org))
    if not outcomes:
        print(f"Org '{args.org}' has no federation peers to contact.")
        return 0

    for outcome in outcomes:
        state = "ok" if outcome.delivered else f"FAILED ({outcome.error})"
        print(f"{outcome.url}: {state}")

    return 0 if all(o.delivered for o in outcomes) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trafficplane federation server",
        prog="trafficplane",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.set_defaults(func=cmd_serve)

    # Token management
    token_parser = subparsers.add_parser("token", help="Manage API tokens")
    token_parser.add_argument(
        "--token-file",
        type=Path,
        default=None,
        help="Path to token storage file (default: TRAFFICPLANE_TOKEN_FILE)",
    )
    token_sub = token_parser.add_subparsers(dest="token_command", required=True)

    create_parser = token_sub.add_parser("create", help="Create a new token")
    create_parser.add_argument("--client-id", "-c", required=True, help="Client identifier (e.g., 'ops-dashboard')")
    create_parser.add_argument("--org", "-o", required=True, help="Organization the token acts for")
    create_parser.add_argument(
        "--role",
        "-r",
        choices=[r.value for r in MembershipRole],
        default=MembershipRole.MEMBER.value,
        help="Membership role (default: MEMBER)",
    )
    create_parser.add_argument("--description", "-d", default="", help="Human-readable description")
    create_parser.add_argument(
        "--expires-days",
        "-e",
        type=int,
        default=None,
        help="Token expires after N days (default: never)",
    )
    create_parser.set_defaults(func=cmd_token_create)

    list_parser = token_sub.add_parser("list", help="List all tokens")
    list_parser.set_defaults(func=cmd_token_list)

    revoke_parser = token_sub.add_parser("revoke", help="Revoke a token")
    revoke_parser.add_argument("--client-id", "-c", help="Revoke all tokens for this client ID")
    revoke_parser.add_argument("--hash", help="Token hash to revoke")
    revoke_parser.add_argument("--token", "-t", help="Raw token to revoke")
    revoke_parser.set_defaults(func=cmd_token_revoke)

    init_parser = subparsers.add_parser("init-db", help="Create the federation tables")
    init_parser.set_defaults(func=cmd_init_db)

    heartbeat_parser = subparsers.add_parser("heartbeat", help="Send one round of heartbeats")
    heartbeat_parser.add_argument("--org", "-o", required=True, help="Organization to send for")
    heartbeat_parser.set_defaults(func=cmd_heartbeat)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
